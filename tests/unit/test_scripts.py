"""Unit tests for the worker and pipeline CLI scripts."""

import importlib.util
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from cre_news.config.settings import settings

SCRIPTS_DIR = Path(__file__).parent.parent.parent / "scripts"


def load_script(name):
    spec = importlib.util.spec_from_file_location(f"{name}_script", SCRIPTS_DIR / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def worker_module():
    return load_script("worker")


@pytest.fixture
def worker(worker_module):
    pipeline = MagicMock()
    pipeline.send_newsletters = AsyncMock(
        return_value={"total_newsletters": 2, "emails_sent": 1, "errors": 1}
    )
    pipeline.prepare_newsletters = AsyncMock(return_value={"newsletters_prepared": 0})
    pipeline.storage.get_stats.return_value = {"uncategorized_articles": 0}
    worker = worker_module.PipelineWorker(pipeline=pipeline)
    worker.send_alert = AsyncMock()
    return worker


class TestPipelineWorker:
    """Tests for the scheduled worker."""

    def test_setup_jobs(self, worker):
        """Should register every scheduled job."""
        worker.setup_jobs()
        ids = {job.id for job in worker.scheduler.get_jobs()}
        assert ids == {
            "scrape_articles", "categorize_articles", "prepare_newsletters",
            "send_newsletters", "health_check",
        }

    @pytest.mark.asyncio
    async def test_send_failures_alert(self, worker):
        """Should alert with the number of failed sends."""
        result = await worker.send_newsletters()

        assert result["errors"] == 1
        worker.send_alert.assert_awaited_once_with("1 newsletters failed to send", level="warning")

    @pytest.mark.asyncio
    async def test_clean_send_does_not_alert(self, worker):
        """Should stay quiet when every newsletter went out."""
        worker.pipeline.send_newsletters.return_value = {
            "total_newsletters": 1, "emails_sent": 1, "errors": 0
        }
        await worker.send_newsletters()
        worker.send_alert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_job_alerts(self, worker):
        """Should report a crashed job and keep running."""
        worker.pipeline.prepare_newsletters.side_effect = RuntimeError("db gone")

        result = await worker.prepare_newsletters()

        assert result == {"error": "db gone"}
        worker.send_alert.assert_awaited_once_with("prepare_newsletters failed: db gone", level="error")

    @pytest.mark.asyncio
    async def test_health_check_backlog(self, worker, worker_module):
        """Should alert on a large categorization backlog."""
        worker.pipeline.storage.get_stats.return_value = {
            "uncategorized_articles": worker_module.BACKLOG_ALERT_THRESHOLD + 1
        }

        result = await worker.health_check()

        assert result["status"] == "healthy"
        worker.send_alert.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_check_failure(self, worker):
        """Should report unhealthy when storage is unreachable."""
        worker.pipeline.storage.get_stats.side_effect = RuntimeError("connection refused")

        result = await worker.health_check()

        assert result == {"status": "unhealthy", "error": "connection refused"}
        worker.send_alert.assert_awaited_once()


class TestSendAlert:
    """Tests for Slack alerting."""

    @pytest.mark.asyncio
    async def test_posts_to_webhook(self, worker_module, monkeypatch):
        """Should post the message to the configured webhook."""
        client = MagicMock()
        client.post = AsyncMock()
        client.__aenter__ = AsyncMock(return_value=client)
        client.__aexit__ = AsyncMock(return_value=False)
        monkeypatch.setattr(worker_module.httpx, "AsyncClient", MagicMock(return_value=client))
        monkeypatch.setattr(settings, "slack_webhook_url", "https://hooks.example.com/T1")

        await worker_module.PipelineWorker(pipeline=MagicMock()).send_alert("3 newsletters failed to send")

        url, = client.post.call_args.args
        assert url == "https://hooks.example.com/T1"
        assert "3 newsletters failed to send" in client.post.call_args.kwargs["json"]["text"]

    @pytest.mark.asyncio
    async def test_skips_without_webhook(self, worker_module, monkeypatch):
        """Should not post when no webhook is configured."""
        client_factory = MagicMock()
        monkeypatch.setattr(worker_module.httpx, "AsyncClient", client_factory)
        monkeypatch.setattr(settings, "slack_webhook_url", None)

        await worker_module.PipelineWorker(pipeline=MagicMock()).send_alert("ignored")

        client_factory.assert_not_called()


class TestRunPipelineCli:
    """Tests for the one-shot pipeline command."""

    STATS = {
        "scrape": {
            "rss": {"loaded": 4, "sources": 3, "failed": 1},
            "linkedin": {"error": "Apify token missing"},
        },
        "categorize": {"processed": 5, "categorized": 3, "irrelevant": 2},
        "prepare": {"newsletters_prepared": 2, "total_subscribers": 7},
        "send": {"emails_sent": 1, "total_newsletters": 2, "errors": 1},
        "storage": {"total_articles": 120, "active_subscribers": 7},
        "time_ms": 2500,
    }

    def test_prints_summary(self, monkeypatch, capsys):
        """Should print each stage, including the send error count."""
        module = load_script("run_pipeline")
        runner = AsyncMock(return_value=self.STATS)
        monkeypatch.setattr(module, "run_pipeline", runner)
        monkeypatch.setattr(module, "load_dotenv", MagicMock())
        monkeypatch.setattr(sys, "argv", ["run_pipeline.py", "--no-scrape"])

        module.main()

        out = capsys.readouterr().out
        runner.assert_awaited_once_with(scrape=False, send=True)
        assert "rss: 4 new from 3 sources, 1 failed" in out
        assert "linkedin: failed (Apify token missing)" in out
        assert "Newsletters sent: 1 of 2, 1 errors" in out
        assert "TIME: 2.5s" in out

    def test_no_send(self, monkeypatch, capsys):
        """Should leave out the send line when sending is skipped."""
        module = load_script("run_pipeline")
        stats = {k: v for k, v in self.STATS.items() if k not in ("send", "scrape")}
        runner = AsyncMock(return_value=stats)
        monkeypatch.setattr(module, "run_pipeline", runner)
        monkeypatch.setattr(module, "load_dotenv", MagicMock())
        monkeypatch.setattr(sys, "argv", ["run_pipeline.py", "--no-scrape", "--no-send"])

        module.main()

        runner.assert_awaited_once_with(scrape=False, send=False)
        assert "Newsletters sent" not in capsys.readouterr().out
