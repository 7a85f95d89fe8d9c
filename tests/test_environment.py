"""Tests for virtual environment provisioning."""

import pytest

from autodeploy.core.exceptions import ProvisioningError
from autodeploy.deploy import environment
from autodeploy.deploy.environment import EnvironmentProvisioner

from conftest import requires_posix


@requires_posix
class TestEnvironmentProvisioner:
    """Test venv creation and reuse."""

    def test_creates_venv(self, tmp_path):
        provisioner = EnvironmentProvisioner(tmp_path / "env", with_pip=False)

        provisioner.ensure()

        assert provisioner.is_valid()
        assert provisioner.activate_script.exists()

    def test_reuses_existing_venv(self, tmp_path):
        """A valid venv is left alone."""
        provisioner = EnvironmentProvisioner(tmp_path / "env", with_pip=False)
        provisioner.ensure()
        marker = tmp_path / "env" / "marker"
        marker.write_text("keep")

        provisioner.ensure()

        assert marker.exists()

    def test_rebuilds_broken_venv(self, tmp_path):
        """A directory without an interpreter is replaced."""
        env_dir = tmp_path / "env"
        env_dir.mkdir()
        (env_dir / "junk").write_text("x")
        provisioner = EnvironmentProvisioner(env_dir, with_pip=False)

        assert not provisioner.is_valid()
        provisioner.ensure()

        assert provisioner.is_valid()
        assert not (env_dir / "junk").exists()

    def test_creation_failure_raises(self, tmp_path, monkeypatch):
        """Errors from venv creation surface as ProvisioningError."""

        def broken_create(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(environment.venv, "create", broken_create)
        provisioner = EnvironmentProvisioner(tmp_path / "env", with_pip=False)

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.ensure()

        assert exc_info.value.code == "venv_failed"
        assert not (tmp_path / "env").exists()
