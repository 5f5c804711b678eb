import asyncio
import unittest

import httpx

from lumeo.common.errors import (
    AuthError,
    ClientRequestError,
    InvalidURLError,
    TransientServerError,
    TransportErrorKind,
)
from lumeo.engine.store.history import PayloadHistory
from lumeo.engine.transport.http import HTTPRequest, Transport, classify_status

URL = "https://api.example.com/v1/predictions"


class TestClassifyStatus(unittest.TestCase):
    def test_status_table(self):
        expected = {
            200: None,
            201: None,
            401: TransportErrorKind.UNAUTHORIZED,
            403: TransportErrorKind.FORBIDDEN,
            429: TransportErrorKind.RATE_LIMITED,
            404: TransportErrorKind.CLIENT_ERROR,
            422: TransportErrorKind.CLIENT_ERROR,
            500: TransportErrorKind.SERVER_ERROR,
            503: TransportErrorKind.SERVER_ERROR,
            302: TransportErrorKind.SERVER_ERROR,
        }
        for code, kind in expected.items():
            self.assertEqual(classify_status(code), kind, f"status {code}")


class TestHTTPRequest(unittest.TestCase):
    def test_rejects_invalid_urls(self):
        for url in ["", "not a url", "ftp://files.example.com/x", "https://"]:
            with self.assertRaises(InvalidURLError, msg=url):
                HTTPRequest("GET", url)

    def test_accepts_https(self):
        request = HTTPRequest("POST", URL, {"Authorization": "Bearer k"}, b"{}")
        self.assertEqual(request.method, "POST")


class TestTransport(unittest.TestCase):
    def setUp(self):
        self.loop = asyncio.new_event_loop()
        self.sink = PayloadHistory()

    def tearDown(self):
        self.loop.close()

    def send(self, handler, request):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = Transport(payload_sink=self.sink, client=client)

        async def run():
            try:
                return await transport.send(request)
            finally:
                await client.aclose()
        return self.loop.run_until_complete(run())

    def test_success_returns_body(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = request.content
            return httpx.Response(201, json={"id": "p1", "status": "starting"})

        body = self.send(handler, HTTPRequest("POST", URL, {"Authorization": "Bearer k"}, b'{"input": {}}'))
        self.assertIn(b'"p1"', body)
        self.assertEqual(seen["auth"], "Bearer k")
        self.assertEqual(seen["body"], b'{"input": {}}')

    def test_payload_recorded_even_when_request_fails(self):
        def handler(request):
            return httpx.Response(500, text="upstream down")

        with self.assertRaises(TransientServerError) as ctx:
            self.send(handler, HTTPRequest("POST", URL, body=b'{"n": 1}'))
        self.assertEqual(self.sink.entries(), ['{"n": 1}'])
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.body, "upstream down")
        self.assertTrue(ctx.exception.retryable)

    def test_get_records_no_payload(self):
        self.send(lambda request: httpx.Response(200, json={}), HTTPRequest("GET", URL))
        self.assertEqual(len(self.sink), 0)

    def test_auth_errors_are_fatal(self):
        with self.assertRaises(AuthError) as ctx:
            self.send(lambda request: httpx.Response(401), HTTPRequest("GET", URL))
        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(ctx.exception.kind, TransportErrorKind.UNAUTHORIZED)

    def test_other_client_errors(self):
        with self.assertRaises(ClientRequestError):
            self.send(lambda request: httpx.Response(404), HTTPRequest("GET", URL))

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with self.assertRaises(TransientServerError) as ctx:
            self.send(handler, HTTPRequest("GET", URL))
        self.assertEqual(ctx.exception.kind, TransportErrorKind.NETWORK_TIMEOUT)

    def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(TransientServerError) as ctx:
            self.send(handler, HTTPRequest("GET", URL))
        self.assertEqual(ctx.exception.kind, TransportErrorKind.NETWORK_UNREACHABLE)

if __name__ == '__main__':
    unittest.main()
