"""Tests for alias and stack removal (libs/kms/deprovision.py)."""

from unittest.mock import MagicMock

import pytest

from libs.kms.deprovision import deprovision
from libs.secrets.exceptions import ExternalServiceError, PartialFailureError
from tests.conftest import REGIONS, FakeRegion, client_error


def _with_stack(fake: FakeRegion) -> None:
    fake.cloudformation.describe_stacks.side_effect = None
    fake.cloudformation.describe_stacks.return_value = {"Stacks": [{}]}


class TestDeprovision:
    """Test suite for deprovision."""

    @pytest.mark.unit()
    def test_dry_run_reports_without_deleting(
        self, aws: dict[str, FakeRegion], region_clients: MagicMock
    ) -> None:
        # Arrange
        for fake in aws.values():
            fake.add_alias()
            _with_stack(fake)

        # Act
        reports = deprovision(region_clients, "default", REGIONS)

        # Assert
        assert list(reports) == REGIONS
        for region, report in reports.items():
            assert report.alias_found and report.stack_found
            assert report.target_key_id == f"key-{region}"
            assert not report.alias_deleted and not report.stack_deleted
            aws[region].kms.delete_alias.assert_not_called()
            aws[region].cloudformation.delete_stack.assert_not_called()

    @pytest.mark.unit()
    def test_destructive_deletes_alias_and_stack(
        self, aws: dict[str, FakeRegion], region_clients: MagicMock
    ) -> None:
        for fake in aws.values():
            fake.add_alias()
            _with_stack(fake)

        reports = deprovision(region_clients, "default", REGIONS, destructive=True)

        for region, report in reports.items():
            assert report.alias_deleted and report.stack_deleted
            aws[region].kms.delete_alias.assert_called_once_with(
                AliasName="alias/strongbox-default"
            )
            aws[region].cloudformation.delete_stack.assert_called_once_with(
                StackName="strongbox-default"
            )

    @pytest.mark.unit()
    def test_nothing_present(self, region_clients: MagicMock) -> None:
        reports = deprovision(region_clients, "default", REGIONS, destructive=True)

        assert all(
            not report.alias_found and not report.stack_found for report in reports.values()
        )

    @pytest.mark.unit()
    def test_failure_in_one_region_does_not_stop_others(
        self, aws: dict[str, FakeRegion], region_clients: MagicMock
    ) -> None:
        # Arrange
        for fake in aws.values():
            fake.add_alias()
            _with_stack(fake)
        aws["us-west-1"].kms.delete_alias.side_effect = client_error("AccessDeniedException")

        # Act
        with pytest.raises(PartialFailureError) as exc_info:
            deprovision(region_clients, "default", REGIONS, destructive=True)

        # Assert
        assert exc_info.value.failed_partitions == ["us-west-1"]
        assert isinstance(exc_info.value.failures["us-west-1"], ExternalServiceError)
        aws["us-east-1"].cloudformation.delete_stack.assert_called_once()
        aws["us-west-2"].cloudformation.delete_stack.assert_called_once()
