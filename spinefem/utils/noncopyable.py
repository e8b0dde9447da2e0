"""spinefem.utils.noncopyable
Mixin for objects with a unique physical identity or a unique external
resource (solver handles, elements).
"""
from spinefem.errors import NonCopyableError


class NonCopyable:
    """Reject ``copy.copy``, ``copy.deepcopy`` and pickling."""

    __slots__ = ()

    def __copy__(self):
        raise NonCopyableError(f"{type(self).__name__} cannot be copied.")

    def __deepcopy__(self, memo):
        raise NonCopyableError(f"{type(self).__name__} cannot be copied.")

    def __reduce_ex__(self, protocol):
        raise NonCopyableError(f"{type(self).__name__} cannot be pickled.")
