"""
Unit tests for the install configuration.
"""

import dataclasses

import pytest
import yaml

from stack_deployer.config import (
    CertificateParams,
    DeploymentMode,
    GpuConfig,
    InstallConfig,
    normalize_selection,
    validate_domain,
)
from stack_deployer.exceptions import ValidationError


class TestModelSelection:
    """Test selection normalization."""

    def test_dedupes_keeping_first_occurrence(self):
        assert normalize_selection(["mistral:7b", "llama3.2:3b", "mistral:7b"]) == (
            "mistral:7b", "llama3.2:3b")

    def test_blank_entries_dropped(self):
        assert normalize_selection([" ", "", "  gemma2:9b "]) == ("gemma2:9b",)

    def test_scalar_is_one_model(self):
        assert normalize_selection("llama3.2:3b") == ("llama3.2:3b",)
        assert normalize_selection("llama3.2:3b, mistral:7b") == ("llama3.2:3b", "mistral:7b")

    def test_none_is_empty(self):
        assert normalize_selection(None) == ()


class TestDomainValidation:
    """Test domain/IP validation."""

    @pytest.mark.parametrize("domain", ["10.0.0.5", "chat.example.com", "localhost", "::1"])
    def test_accepts(self, domain):
        validate_domain(domain)

    @pytest.mark.parametrize("domain", ["", "   ", "my host", "10.0.0", "-bad-.example.com"])
    def test_rejects(self, domain):
        with pytest.raises(ValidationError):
            validate_domain(domain)


class TestGpuConfig:
    """Test GPU settings."""

    def test_device_ids(self):
        assert GpuConfig(enabled=True, count=2).device_ids == "0,1"
        assert GpuConfig(enabled=True, count=1).device_ids == "0"

    @pytest.mark.parametrize("count", [0, -1, "2"])
    def test_invalid_count_when_enabled(self, count):
        with pytest.raises(ValidationError):
            GpuConfig(enabled=True, count=count).validate()

    def test_count_ignored_when_disabled(self):
        GpuConfig(enabled=False, count=0).validate()


class TestInstallConfig:
    """Test the immutable input value."""

    def test_is_frozen(self, make_config):
        config = make_config()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.domain = "other"

    def test_mode_string_coerced(self, make_config):
        assert make_config(mode="advanced").mode == DeploymentMode.ADVANCED

    def test_empty_domain_rejected(self, make_config):
        with pytest.raises(ValidationError):
            make_config(domain="").validate()

    def test_bad_gpu_count_rejected(self, make_config):
        with pytest.raises(ValidationError):
            make_config(gpu=GpuConfig(enabled=True, count=0)).validate()

    def test_bad_country_rejected_in_advanced_mode(self, make_config):
        config = make_config(mode=DeploymentMode.ADVANCED,
                             cert_params=CertificateParams(country="USA"))
        with pytest.raises(ValidationError):
            config.validate()
        # Certificate fields are irrelevant over plain HTTP
        make_config(cert_params=CertificateParams(country="USA")).validate()

    def test_certificate_common_name_is_domain(self, make_config):
        params = make_config(domain="chat.example.com").certificate_params
        assert params.common_name == "chat.example.com"
        assert params.country == "US"
        assert params.org == "Self-Signed"

    def test_identity_per_mode(self, make_config):
        assert make_config().identity.is_root
        advanced = make_config(mode=DeploymentMode.ADVANCED).identity
        assert advanced.user == "openwebui"
        assert (advanced.uid, advanced.gid) == (1000, 1000)

    def test_public_url(self, make_config):
        assert make_config().public_url == "http://10.0.0.5"
        assert make_config(mode=DeploymentMode.ADVANCED).public_url == "https://10.0.0.5"

    def test_save_and_load(self, make_config, tmp_path):
        config = make_config(
            mode=DeploymentMode.ADVANCED,
            gpu=GpuConfig(enabled=True, count=2),
            model_selection=("mistral:7b",),
        )
        path = tmp_path / "install.yaml"
        config.save(path)

        loaded = InstallConfig.load(path)
        assert loaded.mode == DeploymentMode.ADVANCED
        assert loaded.gpu == GpuConfig(enabled=True, count=2)
        assert loaded.model_selection == ("mistral:7b",)
        assert loaded.base_dir == config.base_dir

    def test_load_overrides_win(self, tmp_path):
        path = tmp_path / "install.yaml"
        path.write_text(yaml.safe_dump({"mode": "simple", "domain": "10.0.0.5"}))
        loaded = InstallConfig.load(path, domain="chat.example.com", mode=None)
        assert loaded.domain == "chat.example.com"
        assert loaded.mode == DeploymentMode.SIMPLE

    def test_blank_certificate_fields_fall_back(self, tmp_path):
        path = tmp_path / "install.yaml"
        path.write_text(yaml.safe_dump({"domain": "x.example.com", "cert_params": {"city": ""}}))
        assert InstallConfig.load(path).cert_params.city == "San Francisco"

    def test_load_invalid_mode(self, tmp_path):
        path = tmp_path / "install.yaml"
        path.write_text("mode: turbo\n")
        with pytest.raises(ValidationError):
            InstallConfig.load(path)

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ValidationError):
            InstallConfig.load(tmp_path / "missing.yaml")

    def test_load_not_a_mapping(self, tmp_path):
        path = tmp_path / "install.yaml"
        path.write_text("- one\n- two\n")
        with pytest.raises(ValidationError):
            InstallConfig.load(path)

    def test_blank_values_use_defaults(self, tmp_path):
        path = tmp_path / "install.yaml"
        path.write_text("mode: advanced\ndomain:\nproject_name:\ndocker_user:\n")
        loaded = InstallConfig.load(path)
        assert loaded.domain == ""
        assert loaded.project_name == "openwebui-stack"
        assert loaded.docker_user == "openwebui"
        with pytest.raises(ValidationError):
            loaded.validate()

    def test_load_scalar_model_selection(self, tmp_path):
        path = tmp_path / "install.yaml"
        path.write_text("domain: 10.0.0.5\nmodel_selection: llama3.2:3b\n")
        assert InstallConfig.load(path).model_selection == ("llama3.2:3b",)

    @pytest.mark.parametrize("text", ["gpu: true\n", "cert_params: US\n", "gpu: [1, 2]\n"])
    def test_load_section_not_a_mapping(self, tmp_path, text):
        path = tmp_path / "install.yaml"
        path.write_text(text)
        with pytest.raises(ValidationError):
            InstallConfig.load(path)
