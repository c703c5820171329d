from __future__ import annotations

import typing as tp

import anyio


class AsyncBaseFileManager:
    def __init__(self, is_binary: bool) -> None:
        self.is_binary = is_binary

    async def write_to(self, path: str, data: bytes | str) -> None:
        raise NotImplementedError()

    async def read_from(self, path: str) -> bytes | str | None:
        raise NotImplementedError()


class AsyncFileManager(AsyncBaseFileManager):
    """
    Reads and writes whole files through anyio's worker threads.

    Writes go to a sibling temporary file that is then moved into place, so
    a concurrent reader sees either the previous entry or the new one.
    """

    async def write_to(self, path: str, data: bytes | str) -> None:
        target = anyio.Path(path)
        temporary = target.with_name(f".{target.name}.tmp")
        mode = "wb" if self.is_binary else "wt"

        async with await anyio.open_file(temporary, mode) as f:  # type: ignore[call-overload]
            await f.write(data)
        await temporary.replace(target)

    async def read_from(self, path: str) -> bytes | str | None:
        mode = "rb" if self.is_binary else "rt"

        try:
            async with await anyio.open_file(path, mode) as f:  # type: ignore[call-overload]
                return tp.cast(tp.Union[bytes, str], await f.read())
        except FileNotFoundError:
            return None
