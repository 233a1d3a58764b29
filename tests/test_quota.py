"""Tests for ingestly.services.quota."""

import asyncio

import pytest

from ingestly.errors import InputRejected, ResourceExceeded, RunBudgetExceeded
from ingestly.models.media_asset import MediaAsset
from ingestly.services.quota import BYTES_PER_MB, ExtractionBudget, QuotaEnforcer
from ingestly.services.storage import InMemoryMediaRepository

MB = BYTES_PER_MB


def _repository_with(project_id, *sizes):
    repository = InMemoryMediaRepository()
    for i, size in enumerate(sizes):
        asset = MediaAsset(
            project_id=project_id,
            user_id="user-1",
            filename=f"{project_id}/{i}.png",
            original_filename=f"{i}.png",
            file_type="image/png",
            file_size=size,
            storage_url=f"memory://media/{project_id}/{i}.png",
            source="upload",
        )
        asyncio.run(repository.insert(asset))
    return repository


class TestValidateFile:
    def test_accepts_allowed_type(self):
        QuotaEnforcer(InMemoryMediaRepository()).validate_file("image/png", 5 * MB)

    def test_rejects_disallowed_type(self):
        with pytest.raises(InputRejected, match="not allowed"):
            QuotaEnforcer(InMemoryMediaRepository()).validate_file("image/tiff", 100)

    def test_rejects_oversized_file(self):
        with pytest.raises(ResourceExceeded) as excinfo:
            QuotaEnforcer(InMemoryMediaRepository()).validate_file("image/jpeg", 11 * MB)
        assert excinfo.value.limit == 10
        assert str(excinfo.value) == "File size exceeds maximum of 10MB"


class TestStorageQuota:
    def test_reports_usage_in_mb(self):
        enforcer = QuotaEnforcer(_repository_with("p1", 10 * MB, 5 * MB))
        quota = asyncio.run(enforcer.check_storage_quota("p1"))
        assert quota.allowed
        assert quota.current_usage == 15
        assert quota.limit == 32

    def test_other_projects_do_not_count(self):
        enforcer = QuotaEnforcer(_repository_with("p2", 30 * MB))
        assert asyncio.run(enforcer.check_storage_quota("p1")).current_usage == 0

    def test_thirty_plus_five_exceeds_thirty_two(self):
        enforcer = QuotaEnforcer(_repository_with("p1", 20 * MB, 10 * MB))
        with pytest.raises(ResourceExceeded) as excinfo:
            asyncio.run(enforcer.enforce_storage_quota("p1", 5 * MB))
        assert excinfo.value.current_usage == 30
        assert excinfo.value.limit == 32
        assert excinfo.value.unit == "MB"
        assert str(excinfo.value) == "Storage quota exceeded. Current usage: 30.00MB / 32MB"

    def test_exact_fit_is_allowed(self):
        enforcer = QuotaEnforcer(_repository_with("p1", 30 * MB))
        assert asyncio.run(enforcer.enforce_storage_quota("p1", 2 * MB)).allowed

    def test_custom_ceiling(self):
        enforcer = QuotaEnforcer(_repository_with("p1", 2 * MB), max_project_mb=2)
        assert not asyncio.run(enforcer.check_storage_quota("p1", 1)).allowed

    def test_lock_is_per_project(self):
        enforcer = QuotaEnforcer(InMemoryMediaRepository())
        assert enforcer.lock_for("a") is enforcer.lock_for("a")
        assert enforcer.lock_for("a") is not enforcer.lock_for("b")


class TestExtractionBudget:
    def test_fits_and_record(self):
        budget = ExtractionBudget(max_bytes=100, max_images=3)
        assert budget.fits(100)
        budget.record(60)
        assert not budget.fits(41)
        assert budget.fits(40)
        assert not budget.exhausted

    def test_exhausted_by_images(self):
        budget = ExtractionBudget(max_bytes=100, max_images=1)
        budget.record(1)
        assert budget.exhausted

    def test_exhausted_by_bytes(self):
        budget = ExtractionBudget(max_bytes=100, max_images=5)
        budget.record(100)
        assert budget.exhausted

    def test_exhausted_by_downloads_alone(self):
        budget = ExtractionBudget(max_bytes=100, max_images=5)
        budget.record_download(60)
        assert budget.download_allowance == 40
        assert not budget.exhausted
        budget.record_download(40)
        assert budget.download_allowance == 0
        assert budget.exhausted
        assert budget.bytes_used == 0

    def test_ensure_fits_raises_run_budget_error(self):
        budget = ExtractionBudget(max_bytes=100)
        with pytest.raises(RunBudgetExceeded):
            budget.ensure_fits(101)

    def test_run_budget_error_is_a_resource_error(self):
        assert issubclass(RunBudgetExceeded, ResourceExceeded)
