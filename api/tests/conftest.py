import pytest


class FakeResult:
    def __init__(self, rows=None, rowcount=None):
        self._rows = [dict(r) for r in (rows or [])]
        self.rowcount = len(self._rows) if rowcount is None else rowcount

    def mappings(self):
        return self

    def first(self):
        return self._rows[0] if self._rows else None

    def all(self):
        return list(self._rows)

    def scalar(self):
        if not self._rows:
            return None
        return next(iter(self._rows[0].values()))


class _Nested:
    def __init__(self, db):
        self.db = db

    def __enter__(self):
        self.db.savepoints += 1
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.db.savepoint_rollbacks += 1
        return False


class FakeDB:
    """Scripted stand-in for a SQLAlchemy session.

    Handlers are matched by substrings of the SQL text, first match wins. A
    handler returns a FakeResult, a list of row dicts, or raises.
    """

    def __init__(self):
        self.calls = []
        self.handlers = []
        self.commits = 0
        self.rollbacks = 0
        self.savepoints = 0
        self.savepoint_rollbacks = 0

    def on(self, *needles, result=None, handler=None):
        if handler is None:
            rows = result

            def handler(params):
                return rows

        self.handlers.append((needles, handler))
        return self

    def execute(self, stmt, params=None):
        sql = str(stmt)
        params = dict(params or {})
        self.calls.append((sql, params))
        for needles, handler in self.handlers:
            if all(n in sql for n in needles):
                res = handler(params)
                if isinstance(res, FakeResult):
                    return res
                return FakeResult(res or [])
        return FakeResult([])

    def sql_calls(self, needle):
        return [(sql, params) for sql, params in self.calls if needle in sql]

    def begin_nested(self):
        return _Nested(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


@pytest.fixture
def fake_db():
    return FakeDB()
