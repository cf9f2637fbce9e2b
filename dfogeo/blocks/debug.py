from __future__ import annotations


class GeometryContractError(AssertionError):
    """A precondition or postcondition of a geometry kernel does not hold."""

    def __init__(self, srname: str, msg: str):
        super().__init__(f"{srname}: {msg}")
        self.srname = srname
        self.msg = msg


def require(cond: bool, msg: str, srname: str) -> None:
    """Raise GeometryContractError(srname, msg) unless `cond` holds. Callers gate it on cfg.debugging."""
    if not cond:
        raise GeometryContractError(srname, msg)
