"""
Tests for the input providers.

Interactive answers are fed by patching rich.prompt.
"""

import io
from unittest.mock import patch

import pytest
import yaml
from rich.console import Console

from stack_deployer.config import DeploymentMode, GpuConfig, InstallConfig
from stack_deployer.hardware import HardwareProfile
from stack_deployer.prompts import (
    FileInputProvider,
    InteractiveInputProvider,
    StaticInputProvider,
    parse_model_choices,
)


@pytest.fixture
def quiet_console():
    return Console(file=io.StringIO(), width=120)


def answers(prompt=(), confirm=(), integer=()):
    """Patch the three rich prompt types with scripted answers."""
    return (
        patch("stack_deployer.prompts.Prompt.ask", side_effect=list(prompt)),
        patch("stack_deployer.prompts.Confirm.ask", side_effect=list(confirm)),
        patch("stack_deployer.prompts.IntPrompt.ask", side_effect=list(integer)),
    )


class TestParseModelChoices:
    """Test menu answer parsing."""

    def test_known_models(self):
        assert parse_model_choices("1, 4") == (["llama3.2:3b", "codellama:13b"], False, False)

    def test_custom_and_skip(self):
        assert parse_model_choices("2,8") == (["llama3.1:8b"], True, False)
        assert parse_model_choices("1,9") == ([], False, True)

    @pytest.mark.parametrize("text", ["0", "10", "a", "1;2"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_model_choices(text)


class TestStaticAndFileProviders:
    """Test non-interactive providers."""

    def test_static(self, make_config, cpu_only_8gb):
        config = make_config()
        assert StaticInputProvider(config).collect(cpu_only_8gb) is config

    def test_file_falls_back_to_detected_ip(self, tmp_path, cpu_only_8gb):
        path = tmp_path / "install.yaml"
        path.write_text(yaml.safe_dump({"mode": "advanced", "model_selection": ["mistral:7b"]}))
        config = FileInputProvider(path).collect(cpu_only_8gb)
        assert config.domain == "192.168.1.20"
        assert config.mode == DeploymentMode.ADVANCED
        assert config.model_selection == ("mistral:7b",)

    def test_file_blank_domain_falls_back_to_detected_ip(self, tmp_path, cpu_only_8gb):
        path = tmp_path / "install.yaml"
        path.write_text("mode: advanced\ndomain:\n")
        config = FileInputProvider(path).collect(cpu_only_8gb)
        assert config.domain == "192.168.1.20"
        assert config.certificate_params.common_name == "192.168.1.20"

    def test_file_overrides(self, tmp_path, cpu_only_8gb):
        path = tmp_path / "install.yaml"
        path.write_text(yaml.safe_dump({"domain": "10.0.0.5"}))
        config = FileInputProvider(path, domain="chat.example.com", expose_api=True).collect(cpu_only_8gb)
        assert config.domain == "chat.example.com"
        assert config.expose_api


class TestInteractiveProvider:
    """Test the terminal menus."""

    def test_full_advanced_flow(self, quiet_console, gpu_24gb, tmp_path):
        prompt, confirm, integer = answers(
            prompt=["2", "1,4"],
            # detected IP, default cert, use GPU, expose API, install models, confirm
            confirm=[True, True, True, False, True, True],
            integer=[2],
        )
        with prompt, confirm, integer:
            provider = InteractiveInputProvider(quiet_console, base_dir=tmp_path)
            config = provider.collect(gpu_24gb)

        assert isinstance(config, InstallConfig)
        assert config.mode == DeploymentMode.ADVANCED
        assert config.domain == "10.0.0.5"
        assert config.gpu == GpuConfig(enabled=True, count=2)
        assert not config.expose_api
        assert config.model_selection == ("llama3.2:3b", "codellama:13b")
        assert not config.accept_hardware_warnings
        assert config.base_dir == tmp_path

    def test_manual_domain_is_validated(self, quiet_console):
        profile = HardwareProfile(primary_ip=None)
        prompt, confirm, integer = answers(prompt=["not a host", "chat.example.com"])
        with prompt, confirm, integer:
            domain = InteractiveInputProvider(quiet_console).prompt_domain(profile)
        assert domain == "chat.example.com"

    def test_no_gpu_skips_question(self, quiet_console, cpu_only_8gb):
        prompt, confirm, integer = answers()
        with prompt, confirm as mock_confirm, integer:
            gpu = InteractiveInputProvider(quiet_console).prompt_gpu(cpu_only_8gb)
        assert gpu == GpuConfig()
        mock_confirm.assert_not_called()

    def test_insufficient_disk_declined_then_smaller_model(self, quiet_console):
        profile = HardwareProfile(ram_gb=8, disk_free_gb=5)
        prompt, confirm, integer = answers(prompt=["4", "1"], confirm=[True, False, True])
        with prompt, confirm, integer:
            result = InteractiveInputProvider(quiet_console).prompt_models(profile)
        assert result == (["llama3.2:3b"], False, False)

    def test_insufficient_disk_accepted(self, quiet_console):
        profile = HardwareProfile(ram_gb=32, disk_free_gb=5)
        prompt, confirm, integer = answers(prompt=["4"], confirm=[True, True, True])
        with prompt, confirm, integer:
            result = InteractiveInputProvider(quiet_console).prompt_models(profile)
        assert result == (["codellama:13b"], False, True)

    def test_custom_model_with_warning(self, quiet_console, gpu_24gb):
        prompt, confirm, integer = answers(prompt=["8", "llama3.3:70b"], confirm=[True, True])
        with prompt, confirm, integer:
            result = InteractiveInputProvider(quiet_console).prompt_models(gpu_24gb)
        assert result == (["llama3.3:70b"], True, False)

    def test_skip(self, quiet_console, gpu_24gb):
        prompt, confirm, integer = answers(prompt=["9"], confirm=[True])
        with prompt, confirm, integer:
            assert InteractiveInputProvider(quiet_console).prompt_models(gpu_24gb) == ([], False, False)
