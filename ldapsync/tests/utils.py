from concurrent.futures import Executor, Future


class InlineExecutor(Executor):
    """
    Run each job in the calling thread as soon as it is submitted.
    """

    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        try:
            result = fn(*args, **kwargs)
        except BaseException as e:  # noqa: BLE001
            future.set_exception(e)
        else:
            future.set_result(result)
        return future


class ParkedExecutor(Executor):
    """
    Accept jobs but never run them, so they stay pending until cancelled.
    """

    def __init__(self):
        self.jobs = []

    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        self.jobs.append((fn, args, kwargs, future))
        return future
