import concurrent.futures as concurrentfutures
import multiprocessing
import typing


class PicklableAndCallable:
    def __init__(self, func):
        self.func = func

    def __call__(self, *args, **kw):
        return self.func(*args, **kw)


def imap(
    f: typing.Callable,
    s: typing.Iterable,
    max_workers: int | None = None,
    chunksize: int = 1,
) -> typing.Iterator:
    """lazily applies f to every element of s, in worker processes if asked

    Parameters
    ----------
    f
        a picklable callable, e.g. a module level function
    s
        the work items, e.g. alignment site blocks
    max_workers
        upper limit on worker processes, capped at the cpu count. None or 1
        keeps the work in the calling process.
    chunksize
        work items handed to a worker per dispatch

    Returns
    -------
    generator of f(item), in the order of s
    """
    if not max_workers or max_workers == 1:
        yield from (f(v) for v in s)
        return

    max_workers = min(max_workers, multiprocessing.cpu_count())
    f = PicklableAndCallable(f)
    with concurrentfutures.ProcessPoolExecutor(max_workers) as executor:
        yield from executor.map(f, s, chunksize=chunksize)
