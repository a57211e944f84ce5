"""Output reporting helpers."""
from __future__ import annotations

import csv
import json
import os
import tempfile
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional, TextIO

from .models import Place

PLACE_FIELDNAMES = [
    "id",
    "name",
    "category",
    "address",
    "city",
    "country",
    "latitude",
    "longitude",
    "rating",
    "phone",
    "website",
    "distance_m",
]


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _fsync_dir(path: str) -> None:
    try:
        dir_fd = os.open(path, os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


@contextmanager
def atomic_writer(
    path: str,
    mode: str = "w",
    encoding: str = "utf-8",
    newline: Optional[str] = None,
) -> Iterator[TextIO]:
    dir_path = os.path.dirname(path) or "."
    base = os.path.basename(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=dir_path)
    try:
        with os.fdopen(fd, mode, encoding=encoding, newline=newline) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(dir_path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def write_results_csv(path: str, places: Iterable[Place]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=PLACE_FIELDNAMES)
        writer.writeheader()
        for place in places:
            writer.writerow(place.to_dict())


def write_results_json(path: str, places: Iterable[Place]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump([p.to_dict() for p in places], f, ensure_ascii=False, indent=2)
