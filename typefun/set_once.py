class _Unset:
    pass


_unset = _Unset()


class SetOnce[T]:
    """An attribute that reads as a default until it is assigned once."""

    def __init__(self, default: T | _Unset = _unset) -> None:
        self._default = default

    def __set_name__(self, owner, name: str) -> None:
        self._name = name
        self._storage_name = f'_SetOnce_{self._name}'

    def __get__(self, instance, owner=None) -> T:
        if instance is None:
            return self  # type: ignore
        if not hasattr(instance, self._storage_name):
            if isinstance(self._default, _Unset):
                raise AttributeError(
                    f'Attribute "{self._name}" has not been set'
                )
            return self._default
        return getattr(instance, self._storage_name)

    def __set__(self, instance, value: T) -> None:
        if hasattr(instance, self._storage_name):
            raise AttributeError(
                f'Attribute "{self._name}" cannot be set more than once'
            )
        return setattr(instance, self._storage_name, value)

    def is_set(self, instance) -> bool:
        return hasattr(instance, self._storage_name)
