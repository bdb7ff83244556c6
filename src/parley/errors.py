from __future__ import annotations


class ParleyError(RuntimeError):
    pass


class AliasConflictError(ParleyError):
    def __init__(self, alias: str, command_id: str, conflict_id: str) -> None:
        super().__init__(
            f"alias {alias!r} of command {command_id!r} "
            f"already belongs to command {conflict_id!r}"
        )
        self.alias = alias
        self.command_id = command_id
        self.conflict_id = conflict_id


class DuplicateCommandError(ParleyError):
    def __init__(self, command_id: str) -> None:
        super().__init__(f"command {command_id!r} is already registered")
        self.command_id = command_id


class UnknownCommandError(ParleyError):
    def __init__(self, command_id: str) -> None:
        super().__init__(f"command {command_id!r} is not registered")
        self.command_id = command_id


class UnknownTypeError(ParleyError):
    def __init__(self, type_name: str) -> None:
        super().__init__(f"no argument type named {type_name!r}")
        self.type_name = type_name
