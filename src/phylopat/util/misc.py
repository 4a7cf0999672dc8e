"""Generally useful utility functions."""

import typing

from tqdm import tqdm

T = typing.TypeVar("T")


def progress_series(
    items: typing.Iterable[T],
    show_progress: bool = False,
    total: int | None = None,
    desc: str = "",
    unit: str = "it",
) -> typing.Iterator[T]:
    """wraps items in a tqdm progress bar when show_progress is True"""
    if not show_progress:
        yield from items
        return

    with tqdm(
        items,
        total=total,
        desc=desc,
        unit=unit,
        leave=False,
        dynamic_ncols=True,
        mininterval=1.0,
    ) as bar:
        yield from bar
