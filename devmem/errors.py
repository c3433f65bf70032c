from __future__ import annotations


class DevmemError(Exception):
    """Base error; `http_status` is the status the worker answers with."""

    http_status = 500


class ValidationError(DevmemError):
    http_status = 400


class NotFoundError(DevmemError):
    http_status = 404


class StorageFault(DevmemError):
    http_status = 500


class InferenceSkip(DevmemError):
    """The observer declined to produce a record. Callers treat this as a no-op."""

    http_status = 200
