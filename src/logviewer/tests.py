import json
import os
import tempfile
from datetime import datetime, timedelta, timezone as dt_timezone

from django.conf import settings

from astroluna.testing import AuthenticatedTestCase


class LogsAPIViewTests(AuthenticatedTestCase):

    def setUp(self):
        super().setUp()
        self.user.is_staff = True
        self.user.save(update_fields=['is_staff'])
        self.now = datetime.now(dt_timezone.utc).replace(tzinfo=None)

    def _write_lines(self, lines):
        tf = tempfile.NamedTemporaryFile(mode='w', delete=False, encoding='utf-8', suffix='.json')
        for obj in lines:
            tf.write((obj if isinstance(obj, str) else json.dumps(obj, default=str)) + "\n")
        tf.close()
        self.addCleanup(os.remove, tf.name)
        return tf.name

    def _line(self, minutes_ago, level, message, name='payments'):
        ts = self.now - timedelta(minutes=minutes_ago)
        return {
            'asctime': ts.strftime('%Y-%m-%d %H:%M:%S,') + f'{ts.microsecond // 1000:03d}',
            'levelname': level,
            'name': name,
            'module': 'services',
            'process': 1,
            'thread': 10,
            'message': message,
        }

    def test_requires_staff(self):
        self.user.is_staff = False
        self.user.save(update_fields=['is_staff'])
        resp = self.client.get('/api/logs/')
        self.assertEqual(resp.status_code, 403)

    def test_missing_log_path_returns_500(self):
        with self.settings(LOG_JSON_PATH=None):
            resp = self.client.get('/api/logs/')
        self.assertEqual(resp.status_code, 500)
        self.assertIn('LOG_JSON_PATH', resp.json()['error'])

    def test_file_not_found_returns_404(self):
        with self.settings(LOG_JSON_PATH='/nonexistent/path/to/log.json'):
            resp = self.client.get('/api/logs/')
        self.assertEqual(resp.status_code, 404)

    def test_unknown_source(self):
        resp = self.client.get('/api/logs/', {'source': 'proxy'})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()['sources'], ['django', 'security'])

    def test_pagination_and_filters(self):
        path = self._write_lines([
            self._line(3, 'INFO', 'checkout astroluna_1 created'),
            self._line(2, 'ERROR', 'SPC widget request failed'),
            'not json at all',
            self._line(1, 'INFO', 'checkout astroluna_2 created'),
            self._line(0, 'DEBUG', 'webhook processed'),
        ])

        with self.settings(LOG_JSON_PATH=path):
            body = self.client.get('/api/logs/').json()
            self.assertEqual(body['source'], 'django')
            self.assertEqual(body['count'], 4)
            self.assertEqual(body['results'][0]['logger'], 'payments')

            page = self.client.get('/api/logs/', {'limit': 2, 'offset': 1}).json()
            self.assertEqual((page['offset'], page['limit']), (1, 2))
            self.assertEqual([r['level'] for r in page['results']], ['ERROR', 'INFO'])

            self.assertEqual(self.client.get('/api/logs/', {'query': 'CHECKOUT'}).json()['count'], 2)
            self.assertEqual(self.client.get('/api/logs/', {'level': 'error'}).json()['count'], 1)

            start = (self.now - timedelta(minutes=2, seconds=30)).isoformat() + 'Z'
            self.assertEqual(self.client.get('/api/logs/', {'start': start}).json()['count'], 3)
            end = (self.now - timedelta(minutes=1, seconds=30)).isoformat() + '+00:00'
            self.assertEqual(self.client.get('/api/logs/', {'end': end}).json()['count'], 2)

    def test_limit_is_capped_at_page_size(self):
        path = self._write_lines([self._line(0, 'INFO', f'entry {i}') for i in range(5)])
        with self.settings(LOG_JSON_PATH=path, REST_FRAMEWORK={**settings.REST_FRAMEWORK, "PAGE_SIZE": 3}):
            body = self.client.get('/api/logs/', {'limit': 50}).json()
        self.assertEqual(body['limit'], 3)
        self.assertEqual(len(body['results']), 3)
        self.assertEqual(body['count'], 5)

    def test_security_source(self):
        path = self._write_lines([self._line(0, 'WARNING', 'rate limit exceeded', name='security')])
        with self.settings(SECURITY_LOG_JSON_PATH=path):
            body = self.client.get('/api/logs/', {'source': 'security'}).json()
        self.assertEqual(body['count'], 1)
        self.assertEqual(body['results'][0]['logger'], 'security')
