# Vulture whitelist file
# This file contains false positives that vulture incorrectly flags as dead code.
# These are typically Pydantic fields, Protocol members, pytest fixtures, etc.
#
# Usage: python3 -m vulture server vulture_whitelist.py

# =============================================================================
# Pydantic Model Fields (read by callers and during validation)
# =============================================================================
_.command  # CommandResult model field
_.app_name  # Settings field, reported by embedding applications

# =============================================================================
# Pydantic Config class attributes
# =============================================================================
Config  # config.py - Pydantic settings class
_.env_prefix  # Pydantic settings configuration
_.env_file  # Pydantic settings configuration
_.case_sensitive  # Pydantic settings configuration

# =============================================================================
# Enum Values (part of the flag set even when not constructed directly)
# =============================================================================
_.NONE  # BlockDirection enum value

# =============================================================================
# Protocol Members (structural interfaces satisfied by concrete classes)
# =============================================================================
Waiter  # readiness.py - readiness waiter interface
Waitable  # readiness.py - blocking readiness source interface
PartitionEnumerator  # inventory.py - partition count/listing interface

# =============================================================================
# Public API Methods (called by embedding drivers)
# =============================================================================
configure_logging  # logging_setup.py - logging setup for embedding applications
_.is_encrypted  # connection.py - connection security query
_.is_secure  # connection.py - connection security query
_.lookup_uuid  # connection.py - identity lookup
_.add_identity  # connection.py - identity registration
_.remove_identity  # connection.py - identity removal
_.vios_id  # connection.py - Virtual I/O Server partition id
_.sync_state  # connection.py - outcome of the last table bootstrap

# =============================================================================
# Pytest Fixtures (discovered by pytest at runtime by name)
# =============================================================================
reset_config_validation_cache  # conftest.py - clears cached validation result
restore_config_validation  # test_config_validation.py - isolates validation state
patched_connect  # test_ssh_session.py - stubs socket connect and transport
patched_open_session  # test_connection.py - stubs session establishment
hmc  # test_connection.py - scripted HMC command set
remote_host  # conftest.py - scripted management console
fake_session  # conftest.py - session handing out fake channels
waiter  # conftest.py - recording readiness waiter
test_settings  # conftest.py - settings isolated to tmp_path
executor  # command executor fixture in several test modules
transfer  # test_file_transfer.py - FileTransfer over the fake session
store  # test_table_sync.py - identity table store in tmp_path
make_sync  # test_table_sync.py - synchronizer factory
restore_paramiko_level  # test_logging_setup.py - restores logger level

# =============================================================================
# unittest.mock Magic Attributes (used to configure mock behavior)
# =============================================================================
_.return_value  # Mock return value configuration
_.side_effect  # Mock side effect configuration
_.eof_received  # Mock paramiko channel attribute
_.status_event  # Mock paramiko channel attribute
_.exit_status  # Mock paramiko channel attribute
_.out_window_size  # Mock paramiko channel attribute
_.eof_sent  # Mock paramiko channel attribute

# =============================================================================
# Test Variables (used in unpacking or assertions)
# =============================================================================
exc_info  # Exception info in context manager __exit__
_canonname  # getaddrinfo tuple field
_server_key  # unpacked transport helper result in tests
