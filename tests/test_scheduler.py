from coachbot.scheduler import DIGEST_JOB_ID, build_digest_trigger, create_scheduler


async def _digest():
    return None


class TestScheduler:
    def test_digest_job_registered(self, test_settings):
        scheduler = create_scheduler(_digest, test_settings)

        job = scheduler.get_job(DIGEST_JOB_ID)

        assert job is not None
        assert job.coalesce is True
        assert job.max_instances == 1

    def test_disabled_digest_registers_nothing(self, test_settings):
        settings = test_settings.model_copy(update={"digest_enabled": False})
        assert create_scheduler(_digest, settings).get_jobs() == []

    def test_trigger_uses_cron_and_timezone(self, test_settings):
        trigger = build_digest_trigger(test_settings)

        fields = {field.name: str(field) for field in trigger.fields}
        assert fields["hour"] == "21"
        assert fields["minute"] == "0"
        assert str(trigger.timezone) == "Europe/Moscow"
