"""Tests for health check endpoints."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from kops_operator import health, metrics
from kops_operator.health import create_combined_wsgi_app, mark_not_ready, mark_ready


def _environ(path: str) -> dict:
    return {
        "REQUEST_METHOD": "GET",
        "PATH_INFO": path,
        "SCRIPT_NAME": "",
        "SERVER_NAME": "localhost",
        "SERVER_PORT": "8080",
        "wsgi.url_scheme": "http",
    }


class TestCombinedApp:
    """Test cases for the combined metrics and health app."""

    def test_healthz(self):
        """Test that /healthz always answers ok."""
        start_response = MagicMock()
        app = create_combined_wsgi_app(ready=lambda: False)

        body = b"".join(app(_environ("/healthz"), start_response))

        assert b'"status":"ok"' in body
        assert "200" in start_response.call_args[0][0]

    def test_readyz_ready(self):
        """Test that /readyz answers 200 once ready."""
        start_response = MagicMock()
        app = create_combined_wsgi_app(ready=lambda: True)

        body = b"".join(app(_environ("/readyz"), start_response))

        assert b'"status":"ready"' in body
        assert "200" in start_response.call_args[0][0]

    def test_readyz_not_ready(self):
        """Test that /readyz answers 503 before startup completes."""
        start_response = MagicMock()
        app = create_combined_wsgi_app(ready=lambda: False)

        body = b"".join(app(_environ("/readyz"), start_response))

        assert b'"status":"not ready"' in body
        assert "503" in start_response.call_args[0][0]

    def test_metrics_delegated(self):
        """Test that other paths are served by the prometheus app."""
        start_response = MagicMock()
        app = create_combined_wsgi_app(ready=lambda: True)

        body = b"".join(app(_environ("/metrics"), start_response))

        assert metrics.reconcile_total._name.encode() in body

    def test_module_ready_flag(self):
        """Test that the default probe follows mark_ready and mark_not_ready."""
        app = create_combined_wsgi_app()

        mark_ready()
        start_response = MagicMock()
        app(_environ("/readyz"), start_response)
        assert "200" in start_response.call_args[0][0]

        mark_not_ready()
        start_response = MagicMock()
        app(_environ("/readyz"), start_response)
        assert "503" in start_response.call_args[0][0]


class TestStartMetricsServer:
    """Test cases for start_metrics_server."""

    @patch("kops_operator.health.threading.Thread")
    @patch("kops_operator.health.make_server")
    def test_starts_daemon_thread(self, mock_make_server, mock_thread):
        """Test that the server runs on a daemon thread."""
        health.start_metrics_server(9090)

        assert mock_make_server.call_args.args[:2] == ("", 9090)
        mock_thread.assert_called_once_with(target=mock_make_server.return_value.serve_forever, daemon=True)
        mock_thread.return_value.start.assert_called_once()
