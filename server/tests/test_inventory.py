"""Unit tests for console detection and partition enumeration."""

import pytest

from phyp_bridge.core.errors import ConsistencyError, ProtocolFailure, RemoteCommandError
from phyp_bridge.core.models import SystemType
from phyp_bridge.services.command_executor import CommandExecutor
from phyp_bridge.services.inventory import PartitionInventory, detect_system_type

HMC_COUNT = "lssyscfg -r lpar -m sys1 -F lpar_id,state |grep -c '^[0-9][0-9]*'"
HMC_LIST = "lssyscfg -r lpar -m sys1 -F lpar_id,state | sed -e 's/,.*$//'"
IVM_LIST = "lssyscfg -r lpar -F lpar_id,state | sed -e 's/,.*$//'"


@pytest.fixture
def executor(fake_session, waiter, test_settings):
    return CommandExecutor(fake_session, waiter=waiter, settings=test_settings)


@pytest.mark.unit
class TestDetectSystemType:
    def test_hmc_when_lshmc_succeeds(self, executor, remote_host):
        remote_host.commands["lshmc -V"] = (b"version= Version: 7\n", 0)

        assert detect_system_type(executor) == SystemType.HMC

    def test_ivm_when_lshmc_is_missing(self, executor):
        assert detect_system_type(executor) == SystemType.IVM

    def test_unknown_status_is_protocol_failure(self, executor, remote_host):
        remote_host.no_exit_status = True

        with pytest.raises(ProtocolFailure):
            detect_system_type(executor)


@pytest.mark.unit
class TestPartitionInventory:
    def test_hmc_commands_name_managed_system(self, executor, remote_host):
        remote_host.commands[HMC_COUNT] = (b"3\n", 0)
        remote_host.commands[HMC_LIST] = (b"1\n2\n5\n", 0)
        inventory = PartitionInventory(executor, SystemType.HMC, managed_system="sys1")

        assert inventory.count() == 3
        assert inventory.list_ids() == [1, 2, 5]

    def test_ivm_ignores_managed_system(self, executor, remote_host):
        remote_host.commands[IVM_LIST] = (b"1\n", 0)
        inventory = PartitionInventory(executor, SystemType.IVM, managed_system="sys1")

        assert inventory.list_ids() == [1]
        assert remote_host.executed == [IVM_LIST]

    def test_empty_listing(self, executor, remote_host):
        remote_host.commands[IVM_LIST] = (b"", 0)

        assert PartitionInventory(executor, SystemType.IVM).list_ids() == []

    def test_listing_failure_raises(self, executor, remote_host):
        remote_host.commands[IVM_LIST] = (b"lssyscfg: permission denied\n", 1)

        with pytest.raises(RemoteCommandError) as excinfo:
            PartitionInventory(executor, SystemType.IVM).list_ids()

        assert excinfo.value.exit_status == 1

    def test_unparseable_id_is_consistency_error(self, executor, remote_host):
        remote_host.commands[IVM_LIST] = (b"1\nvios\n", 0)

        with pytest.raises(ConsistencyError):
            PartitionInventory(executor, SystemType.IVM).list_ids()

    def test_vios_partition_id(self, executor, remote_host):
        inventory = PartitionInventory(executor, SystemType.HMC, managed_system="sys1")
        command = (
            "lssyscfg -r lpar -m sys1 -F lpar_id,lpar_env"
            "|sed -n '/vioserver/ {\n s/,.*$//\n p\n}'"
        )
        remote_host.commands[command] = (b"4\n", 0)

        assert inventory.vios_partition_id() == 4
