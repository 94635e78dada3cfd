import time

from PySide6.QtCore import QCoreApplication


def wait_until(predicate, timeout=2.0, step=0.01):
    """Крутит цикл событий Qt, пока predicate() не станет истинным."""
    app = QCoreApplication.instance()
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        app.processEvents()
        if predicate():
            return True
        time.sleep(step)
    app.processEvents()
    return bool(predicate())


def pump(duration=0.1):
    wait_until(lambda: False, timeout=duration)
