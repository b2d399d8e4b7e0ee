import secrets
from collections.abc import Callable

from ..core.ports import IdGenerator

MAX_ATTEMPTS = 16


class HexId(IdGenerator):
    """
    Random hex ids. With `taken`, ids already present in the vault are
    skipped, so an auto-created note never overwrites an existing file.
    """

    def __init__(self, nbytes: int = 6, taken: Callable[[str], bool] | None = None):  # 6 bytes -> 12 hex chars
        self.nbytes = nbytes
        self.taken = taken

    def new_id(self) -> str:
        for _ in range(MAX_ATTEMPTS):
            nid = secrets.token_hex(self.nbytes)
            if self.taken is None or not self.taken(nid):
                return nid
        raise RuntimeError(f"no free id after {MAX_ATTEMPTS} attempts; raise [id] bytes")
