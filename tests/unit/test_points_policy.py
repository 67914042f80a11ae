"""Tests for the points policy."""

import pytest

from engage.core.config import settings
from engage.domain.template import DayTemplate
from engage.services import points_policy


@pytest.fixture
def template() -> DayTemplate:
    return DayTemplate(project_id="1", day_number=1, title="Hydrate", points_base=10)


@pytest.mark.unit
class TestPointsPolicy:
    def test_submission_without_media(self, template):
        assert points_policy.submission_points(template=template, media_present=False) == 10

    def test_submission_with_media_gets_bonus(self, template):
        assert points_policy.submission_points(template=template, media_present=True) == 25

    def test_bonus_is_configurable(self, template, monkeypatch):
        monkeypatch.setattr(settings, "media_bonus_points", 5)

        assert points_policy.submission_points(template=template, media_present=True) == 15

    def test_approval_rederives_from_template(self, template):
        assert points_policy.approval_points(template=template, submitted_points=25) == 10

    def test_approval_can_keep_submitted_points(self, template, monkeypatch):
        monkeypatch.setattr(settings, "approval_points_source", "submitted")

        assert points_policy.approval_points(template=template, submitted_points=25) == 25

    def test_rejection_is_worth_nothing(self):
        assert points_policy.rejection_points() == 0
