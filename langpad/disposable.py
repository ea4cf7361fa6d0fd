# langpad/disposable.py
from typing import Callable, Optional


class Disposable:
    """
    Handle returned by every subscription in langpad.

    Calling ``dispose()`` runs the release callback once; later calls are no-ops.
    """

    def __init__(self, callback: Optional[Callable[[], None]] = None):
        self._callback = callback
        self.disposed = False

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        if self._callback is not None:
            self._callback()
            self._callback = None

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "active"
        return f"<Disposable {state}>"
