"""Recurrence expansion into concrete appointment drafts."""

from collections.abc import Iterator
from dataclasses import replace
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from clinicflow.config import SchedulingConfig
from clinicflow.errors import ValidationError
from clinicflow.models.appointment import Appointment, Frequency, RecurrenceRule
from clinicflow.services.calendar_store import CalendarSource


class RecurrenceExpander:
    """Turns a recurrence rule into appointment drafts.

    Steps are taken in clinic-local wall-clock time so a 09:00 weekly
    appointment stays at 09:00 across DST changes. Monthly rules keep the
    seed's day of month and skip months that do not have it. Weekly rules
    with selected weekdays start from the seed's week and never go before
    the seed itself.
    """

    def __init__(self, calendar: CalendarSource, config: SchedulingConfig):
        self.calendar = calendar
        self.config = config

    def validate(self, rule: RecurrenceRule) -> None:
        if rule.interval > self.config.max_recurrence_interval:
            raise ValidationError(f"Recurrence interval cannot exceed {self.config.max_recurrence_interval}")

    def occurrences(
        self, rule: RecurrenceRule, seed_start: datetime, tz: ZoneInfo, cursor: int = 0
    ) -> Iterator[tuple[int, datetime]]:
        """Yield ``(cursor, start)`` for each occurrence from ``cursor`` on, honouring ``until``.

        The cursor counts rule steps, including skipped months and weekdays,
        so expansion can resume where a previous batch stopped.
        """
        local_seed = seed_start.astimezone(tz).replace(tzinfo=None)
        step = cursor
        while True:
            local = self._step(rule, local_seed, step)
            if local is None:
                step += 1
                continue
            if rule.until is not None and local.date() > rule.until:
                return
            yield step, local.replace(tzinfo=tz).astimezone(seed_start.tzinfo)
            step += 1

    def expand(
        self,
        rule: RecurrenceRule,
        seed: Appointment,
        horizon: int,
        cursor: int = 0,
        already_generated: int = 0,
    ) -> Iterator[tuple[int, Appointment]]:
        """Yield ``(cursor, draft)`` pairs, at most ``horizon`` of them.

        ``horizon`` is capped by ``max_recurrence_instances``; ``count`` rules
        stop once ``already_generated`` plus this batch reaches the count.
        """
        self.validate(rule)
        limit = min(horizon, self.config.max_recurrence_instances)
        if rule.count is not None:
            limit = min(limit, rule.count - already_generated)
        if limit <= 0:
            return

        tz = self.calendar.clinic_timezone(seed.clinic_id)
        duration = seed.end - seed.start
        produced = 0
        for step, start in self.occurrences(rule, seed.start, tz, cursor):
            yield step, replace(seed, start=start, end=start + duration, history=[])
            produced += 1
            if produced >= limit:
                return

    @staticmethod
    def _step(rule: RecurrenceRule, local_seed: datetime, step: int) -> datetime | None:
        if rule.frequency == Frequency.DAILY:
            return local_seed + timedelta(days=step * rule.interval)
        if rule.frequency == Frequency.WEEKLY:
            if not rule.days_of_week:
                return local_seed + timedelta(weeks=step * rule.interval)
            week, slot = divmod(step, len(rule.days_of_week))
            week_start = local_seed - timedelta(days=local_seed.weekday())
            local = week_start + timedelta(weeks=week * rule.interval, days=rule.days_of_week[slot])
            # Selected weekdays before the seed in its first week
            return local if local >= local_seed else None

        months = local_seed.month - 1 + step * rule.interval
        year, month = local_seed.year + months // 12, months % 12 + 1
        try:
            return local_seed.replace(year=year, month=month)
        except ValueError:
            return None
