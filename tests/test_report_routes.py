"""Route tests for report generation, retrieval and the auth endpoints."""

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import app as app_module
import backend.plan_generator as plan_generator
from app import limiter
from backend.entitlement import issue_token
from backend.errors import GenerationUnavailable
from backend.redaction import UPSELL_NEXT_STEPS
from conftest import build_content


def _auth(token):
    return {'Authorization': f'Bearer {token}'}


class TestGenerate:

    def test_returns_limited_view(self, client, monkeypatch):
        monkeypatch.setattr(app_module, 'generate_plan', lambda profile: build_content(6, 5))
        r = client.post('/api/report/generate', json={'studentData': {'studentName': 'Ada'}})
        d = r.get_json()
        assert r.status_code == 200
        assert d['reportId'].startswith('report_')
        assert d['isPaid'] is False
        assert len(d['reportData']['timeline']) == 4
        assert d['reportData']['nextSteps'] == UPSELL_NEXT_STEPS

    def test_profile_and_content_are_stored(self, client, monkeypatch, report_store):
        monkeypatch.setattr(app_module, 'generate_plan', lambda profile: build_content(6, 5))
        r = client.post('/api/report/generate', json={'studentData': {'studentName': 'Ada'}})
        stored = report_store.get(r.get_json()['reportId'])
        assert stored['studentProfile'] == {'studentName': 'Ada'}
        assert len(stored['content']['timeline']) == 6
        assert len(stored['content']['nextSteps']) == 5

    def test_missing_student_data(self, client):
        r = client.post('/api/report/generate', json={})
        assert r.status_code == 400
        assert r.get_json()['success'] is False

    def test_generation_failure_stores_nothing(self, client, monkeypatch, report_store):
        def fail(profile):
            raise GenerationUnavailable()
        monkeypatch.setattr(app_module, 'generate_plan', fail)
        before = len(report_store._reports)
        r = client.post('/api/report/generate', json={'studentData': {'studentName': 'Ada'}})
        assert r.status_code == 503
        assert r.get_json()['error'] == 'GENERATION_UNAVAILABLE'
        assert len(report_store._reports) == before

    def test_no_api_key_is_unavailable(self, client):
        r = client.post('/api/report/generate', json={'studentData': {'studentName': 'Ada'}})
        assert r.status_code == 503


class TestGetReport:

    def test_without_token(self, client, seeded_report):
        report_id = seeded_report()
        d = client.get(f'/api/report/{report_id}').get_json()
        assert d['isPaid'] is False
        assert [p['period'] for p in d['report']['timeline']] == ['Period 1', 'Period 2', 'Period 3', 'Period 4']
        assert d['report']['nextSteps'] == UPSELL_NEXT_STEPS
        assert d['studentData']['studentName'] == 'Ada'

    def test_with_matching_token(self, client, seeded_report):
        report_id = seeded_report()
        token = issue_token(report_id, 'card', order_id='1001')
        d = client.get(f'/api/report/{report_id}', headers=_auth(token)).get_json()
        assert d['isPaid'] is True
        assert len(d['report']['timeline']) == 6
        assert [s['title'] for s in d['report']['nextSteps']] == [f'Step {i}' for i in range(1, 6)]

    def test_token_for_other_report(self, client, seeded_report):
        report_id, other_id = seeded_report(), seeded_report()
        token = issue_token(other_id, 'crypto')
        d = client.get(f'/api/report/{report_id}', headers=_auth(token)).get_json()
        assert d['isPaid'] is False
        assert len(d['report']['timeline']) == 4

    def test_expired_token_gets_limited_view(self, client, seeded_report):
        report_id = seeded_report()
        token = issue_token(report_id, 'card', now=datetime.now(timezone.utc) - timedelta(hours=25))
        r = client.get(f'/api/report/{report_id}', headers=_auth(token))
        assert r.status_code == 200
        assert r.get_json()['isPaid'] is False

    def test_garbage_token_gets_limited_view(self, client, seeded_report):
        report_id = seeded_report()
        r = client.get(f'/api/report/{report_id}', headers=_auth('nope'))
        assert r.status_code == 200
        assert r.get_json()['isPaid'] is False

    def test_unknown_report(self, client):
        r = client.get('/api/report/report_missing')
        assert r.status_code == 404
        assert r.get_json()['error'] == 'NOT_FOUND'

    def test_not_cached(self, client, seeded_report):
        r = client.get(f'/api/report/{seeded_report()}')
        assert 'no-store' in r.headers['Cache-Control']
        assert r.headers['X-Content-Type-Options'] == 'nosniff'

    def test_html_view(self, client, seeded_report):
        report_id = seeded_report()
        html = client.get(f'/api/report/{report_id}/html').get_data(as_text=True)
        assert 'Period 4' in html
        assert 'Period 5' not in html
        assert 'Step 1' not in html

        token = issue_token(report_id, 'card')
        html = client.get(f'/api/report/{report_id}/html', headers=_auth(token)).get_data(as_text=True)
        assert 'Period 6' in html
        assert 'Step 5' in html


class TestPdf:

    def test_requires_token(self, client, seeded_report):
        r = client.get(f'/api/report/{seeded_report()}/pdf')
        assert r.status_code == 401

    def test_token_for_other_report(self, client, seeded_report):
        report_id, other_id = seeded_report(), seeded_report()
        r = client.get(f'/api/report/{report_id}/pdf', headers=_auth(issue_token(other_id, 'card')))
        assert r.status_code == 403
        assert r.get_json()['error'] == 'INVALID_CLAIM'

    def test_download(self, client, seeded_report):
        report_id = seeded_report()
        r = client.get(f'/api/report/{report_id}/pdf', headers=_auth(issue_token(report_id, 'card')))
        assert r.status_code == 200
        assert r.mimetype == 'application/pdf'
        assert r.data.startswith(b'%PDF')
        assert report_id in r.headers['Content-Disposition']


class TestAdaScenario:
    """Generate, view limited, pay by card, view full."""

    def test_end_to_end(self, client, monkeypatch):
        monkeypatch.setattr(app_module, 'generate_plan', lambda profile: build_content(6, 5))
        monkeypatch.setattr(app_module, 'verify_order',
                            lambda order_id: {'verified': True, 'order_id': order_id, 'user_email': ''})

        r = client.post('/api/report/generate', json={'studentData': {
            'studentName': 'Ada', 'currentGrade': '11th', 'academicInterests': ['Math'],
        }})
        report_id = r.get_json()['reportId']

        limited = client.get(f'/api/report/{report_id}').get_json()['report']
        assert len(limited['timeline']) == 4
        assert limited['nextSteps'] == UPSELL_NEXT_STEPS

        r = client.post('/api/lemon-squeezy/verify', json={'order_id': 'ada-1', 'reportId': report_id})
        token = r.get_json()['token']

        full = client.get(f'/api/report/{report_id}', headers=_auth(token)).get_json()
        assert full['isPaid'] is True
        assert len(full['report']['timeline']) == 6
        assert len(full['report']['nextSteps']) == 5


class TestAuthRoutes:

    def test_beta_code(self, client, monkeypatch, seeded_report):
        monkeypatch.setenv('BETA_CODE', 'BETA2026')
        report_id = seeded_report()
        r = client.post('/api/auth/verify-beta', json={'betaCode': 'BETA2026', 'reportId': report_id})
        assert r.status_code == 200
        token = r.get_json()['token']
        assert client.get(f'/api/report/{report_id}', headers=_auth(token)).get_json()['isPaid'] is True

    def test_beta_code_without_report_unlocks_nothing(self, client, monkeypatch, seeded_report):
        monkeypatch.setenv('BETA_CODE', 'BETA2026')
        token = client.post('/api/auth/verify-beta', json={'betaCode': 'BETA2026'}).get_json()['token']

        r = client.get('/api/auth/validate-token', headers=_auth(token))
        assert r.status_code == 200
        assert r.get_json()['data']['source'] == 'beta_code'
        assert r.get_json()['data']['reportId'] is None

        d = client.get(f'/api/report/{seeded_report()}', headers=_auth(token)).get_json()
        assert d['isPaid'] is False

    def test_wrong_beta_code(self, client, monkeypatch):
        monkeypatch.setenv('BETA_CODE', 'BETA2026')
        assert client.post('/api/auth/verify-beta', json={'betaCode': 'nope'}).status_code == 400

    def test_beta_code_not_configured(self, client):
        assert client.post('/api/auth/verify-beta', json={'betaCode': 'anything'}).status_code == 400

    def test_validate_token_errors(self, client):
        assert client.get('/api/auth/validate-token').status_code == 401
        assert client.get('/api/auth/validate-token', headers=_auth('garbage')).status_code == 403
        expired = issue_token('report_1', 'card', now=datetime.now(timezone.utc) - timedelta(days=2))
        assert client.get('/api/auth/validate-token', headers=_auth(expired)).status_code == 401

    def test_coupon(self, client, monkeypatch):
        monkeypatch.setenv('COUPON_CODES', 'SAVE50, EARLYBIRD')
        r = client.post('/api/auth/verify-coupon', json={'couponCode': 'EARLYBIRD'})
        assert r.status_code == 200
        assert r.get_json()['discountAmount'] == '0.01'
        assert client.post('/api/auth/verify-coupon', json={'couponCode': 'BOGUS'}).status_code == 400


class TestMisc:

    def test_health(self, client):
        d = client.get('/api/health').get_json()
        assert d['status'] == 'healthy'
        assert d['ai_enabled'] is False

    def test_unknown_route_is_json(self, client):
        r = client.get('/api/nope')
        assert r.status_code == 404
        assert r.get_json()['success'] is False

    def test_wrong_method(self, client):
        assert client.get('/api/lemon-squeezy/verify').status_code == 405


class TestMalformedModelReply:

    def test_null_next_step_is_unavailable(self, client, monkeypatch, report_store):
        reply = json.dumps({"overview": "x", "timeline": [{"period": "P", "events": []}], "nextSteps": [None]})

        class ClaudeReplying:
            def __init__(self, **kwargs):
                self.messages = SimpleNamespace(
                    create=lambda **kw: SimpleNamespace(content=[SimpleNamespace(text=reply)]))

        monkeypatch.setenv('ANTHROPIC_API_KEY', 'sk-test')
        monkeypatch.setattr(plan_generator, 'Anthropic', ClaudeReplying)
        before = len(report_store._reports)
        r = client.post('/api/report/generate', json={'studentData': {'studentName': 'Ada'}})
        assert r.status_code == 503
        assert r.get_json()['error'] == 'GENERATION_UNAVAILABLE'
        assert len(report_store._reports) == before


class TestRateLimitMessages:

    def _exhaust(self, client, path, limit, ip):
        limiter.enabled = True
        try:
            for _ in range(limit):
                client.post(path, json={}, headers={'X-Forwarded-For': ip})
            return client.post(path, json={}, headers={'X-Forwarded-For': ip})
        finally:
            limiter.reset()
            limiter.enabled = False

    def test_coupon_limit_is_generic(self, client):
        r = self._exhaust(client, '/api/auth/verify-coupon', 30, '203.0.113.7')
        assert r.status_code == 429
        assert 'free reports' not in r.get_json()['message']

    def test_generate_limit_mentions_reports(self, client):
        r = self._exhaust(client, '/api/report/generate', 10, '203.0.113.8')
        assert r.status_code == 429
        assert 'free reports' in r.get_json()['message']
