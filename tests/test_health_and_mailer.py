"""
Liveness/readiness endpoints and the SMTP mailer.
"""
from unittest.mock import patch

import mailer


class TestHealth:

    def test_root(self, client):
        body = client.get("/").json()
        assert body["ok"] is True
        assert body["service"] == "dinherin-backend"

    def test_health(self, client):
        assert client.get("/api/health").json()["status"] == "ok"

    def test_ready_after_startup(self, client):
        body = client.get("/api/ready").json()
        assert body["db"] == "up"
        assert body["db_ready"] is True
        assert body["ready"] is True

    def test_unknown_route_uses_error_shape(self, client):
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "error": "Not Found"}


class TestMailer:

    def test_skips_without_smtp(self):
        with patch("mailer.smtplib.SMTP") as smtp:
            assert mailer.send_password_reset_email("ana@example.com", "Ana", "http://x/reset") is False
        smtp.assert_not_called()

    def test_sends_reset_link(self):
        with patch.multiple(mailer, SMTP_HOST="smtp.example.com", SMTP_USER="bot@example.com",
                            SMTP_PASS="secret", MAIL_FROM="bot@example.com"), \
             patch("mailer.smtplib.SMTP") as smtp:
            sent = mailer.send_password_reset_email("ana@example.com", "Ana", "http://x/reset?token=abc")

        assert sent is True
        conn = smtp.return_value.__enter__.return_value
        conn.starttls.assert_called_once()
        conn.login.assert_called_once_with("bot@example.com", "secret")
        msg = conn.send_message.call_args.args[0]
        assert msg["To"] == "ana@example.com"
        assert msg["Subject"] == mailer.RESET_SUBJECT
        assert "http://x/reset?token=abc" in msg.get_content()
