"""
College Planner -- Report Store
Generated reports, KryptoGO payment records, and the order redemption ledger.

Redis-backed when REDIS_URL is set (persistent across deploys), with an
in-memory fallback when it is not or when the connection fails at startup.
"""

import os
import json
import threading

from backend.errors import ReportNotFound

_KEY_PREFIX = 'collegeplanner'


class ReportStore:
    """Interface shared by both backends."""

    backend = 'abstract'

    def put(self, report):
        raise NotImplementedError

    def get(self, report_id):
        raise NotImplementedError

    def save_payment(self, record):
        raise NotImplementedError

    def get_payment(self, payment_id):
        raise NotImplementedError

    def claim_order(self, order_id, report_id):
        """
        Record that order_id unlocked report_id.

        Returns the report id the order is bound to: report_id itself on the
        first claim, or whatever an earlier claim recorded.
        """
        raise NotImplementedError


class MemoryReportStore(ReportStore):
    """Process-local dicts. Lost on restart."""

    backend = 'memory'

    def __init__(self):
        self._reports = {}
        self._payments = {}
        self._orders = {}
        self._lock = threading.Lock()

    def put(self, report):
        with self._lock:
            self._reports[report['id']] = report
        return report['id']

    def get(self, report_id):
        report = self._reports.get(report_id)
        if report is None:
            raise ReportNotFound()
        return report

    def save_payment(self, record):
        with self._lock:
            self._payments[record['id']] = dict(record)
        return record['id']

    def get_payment(self, payment_id):
        record = self._payments.get(payment_id)
        return dict(record) if record else None

    def claim_order(self, order_id, report_id):
        with self._lock:
            return self._orders.setdefault(order_id, report_id)


class RedisReportStore(ReportStore):
    """JSON values in Redis. Reports and payments have no TTL."""

    backend = 'redis'

    def __init__(self, client):
        self._redis = client

    def _key(self, kind, ident):
        return f'{_KEY_PREFIX}:{kind}:{ident}'

    def put(self, report):
        self._redis.set(self._key('report', report['id']), json.dumps(report))
        return report['id']

    def get(self, report_id):
        raw = self._redis.get(self._key('report', report_id))
        if not raw:
            raise ReportNotFound()
        return json.loads(raw)

    def save_payment(self, record):
        self._redis.set(self._key('payment', record['id']), json.dumps(record))
        return record['id']

    def get_payment(self, payment_id):
        raw = self._redis.get(self._key('payment', payment_id))
        return json.loads(raw) if raw else None

    def claim_order(self, order_id, report_id):
        key = self._key('order', order_id)
        # SETNX: first redemption wins
        if self._redis.set(key, report_id, nx=True):
            return report_id
        return self._redis.get(key)


def create_report_store(redis_url=None):
    """Pick Redis when configured and reachable, otherwise memory."""
    redis_url = redis_url if redis_url is not None else os.getenv('REDIS_URL')
    if redis_url:
        try:
            import redis
            client = redis.from_url(redis_url, decode_responses=True)
            client.ping()
            print("📦 Report store: Redis connected (persistent)")
            return RedisReportStore(client)
        except Exception as e:
            print(f"📦 Report store: in-memory fallback (Redis error: {e})")
            return MemoryReportStore()
    print("📦 Report store: in-memory fallback (no REDIS_URL)")
    return MemoryReportStore()
