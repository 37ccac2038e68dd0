#!/usr/bin/env python3
"""Test tools/schedule_preview.py."""

from datetime import date, timedelta, timezone

import pytest

from sunset_light.location import GeoLocation
from tools.schedule_preview import preview_curve, simulate


class TestSchedulePreview:
    """Offline preview of a day."""

    def test_curve_covers_the_day(self):
        samples = preview_curve(date(2024, 6, 21), GeoLocation(45.0, 0.0), 5000, 2700, timedelta(hours=1), timezone.utc)

        assert len(samples) == 24
        assert samples[0][1] == 2700
        assert samples[12][1] == 5000

    @pytest.mark.asyncio
    async def test_simulation_sends_only_changes(self):
        sent = await simulate(date(2024, 6, 21), GeoLocation(45.0, 0.0), 5000, 2700, timedelta(minutes=10), timezone.utc)

        mireds = [mired for _, mired in sent]
        assert mireds[0] == 370
        assert 200 in mireds
        # Never the same value twice in a row
        assert all(a != b for a, b in zip(mireds, mireds[1:]))
