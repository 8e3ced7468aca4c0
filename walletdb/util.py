import os
import stat
import time


def make_dir(path: str) -> None:
    # Make directory if it does not yet exist.
    if not os.path.exists(path):
        if os.path.islink(path):
            raise Exception('Dangling link: ' + path)
        os.makedirs(path)
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR | stat.S_IXUSR)


def get_time() -> int:
    return int(time.time())


def format_time(timestamp: int, format_string: str) -> str:
    return time.strftime(format_string, time.gmtime(timestamp))
