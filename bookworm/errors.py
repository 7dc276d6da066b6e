from __future__ import annotations

from typing import Optional


class BookwormError(ValueError):
    pass


class MalformedContainer(BookwormError):
    def __init__(self, message: str, *, path: Optional[str] = None, offset: Optional[int] = None) -> None:
        self.path = path
        self.offset = offset
        detail = message
        if path:
            detail = f"{detail} (entry: {path})"
        if offset is not None:
            detail = f"{detail} at byte {offset}"
        super().__init__(detail)


class MissingAttribute(BookwormError):
    def __init__(self, element: str, attribute: str, *, path: Optional[str] = None) -> None:
        self.element = element
        self.attribute = attribute
        self.path = path
        detail = f"<{element}> is missing required attribute '{attribute}'"
        if path:
            detail = f"{detail} in {path}"
        super().__init__(detail)


class ContentParseError(BookwormError):
    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        self.path = path
        self.line = line
        self.column = column
        where = path or "<document>"
        if line is not None:
            where = f"{where}:{line}"
            if column is not None:
                where = f"{where}:{column}"
        super().__init__(f"{where}: {message}")


class UnsupportedConversion(BookwormError):
    def __init__(self, source: object, target: object) -> None:
        self.source = source
        self.target = target
        super().__init__(f"Unsupported conversion: {source} -> {target}")


class UnsupportedFormat(BookwormError):
    def __init__(self, kind: object, *, path: Optional[str] = None) -> None:
        self.kind = kind
        self.path = path
        detail = f"Unsupported format: {kind}"
        if path:
            detail = f"{detail} ({path})"
        super().__init__(detail)
