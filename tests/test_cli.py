"""
Tests for the command line interface.

Hardware detection and docker are patched; everything else runs for real
inside tmp_path.
"""

import subprocess
from unittest.mock import patch

import pytest
import yaml

from stack_deployer.__main__ import build_parser, config_overrides, main
from stack_deployer.config import DeploymentMode, GpuConfig


@pytest.fixture
def no_docker():
    """docker inspect finds nothing, docker compose is never reached."""
    with patch("stack_deployer.services.subprocess.run",
               return_value=subprocess.CompletedProcess([], 1, stdout="", stderr="")) as mock_run:
        yield mock_run


@pytest.fixture
def host(gpu_24gb):
    with patch("stack_deployer.__main__.HardwareProfiler.profile", return_value=gpu_24gb):
        yield gpu_24gb


class TestArguments:
    """Test flag parsing."""

    def test_overrides_only_contain_set_flags(self):
        args = build_parser().parse_args(["plan", "--mode", "advanced", "--gpus", "2"])
        assert config_overrides(args) == {
            "mode": DeploymentMode.ADVANCED,
            "gpu": GpuConfig(enabled=True, count=2),
        }

    def test_models_flag(self):
        args = build_parser().parse_args(["install", "--models", "mistral:7b,,llama3.2:3b"])
        assert config_overrides(args)["model_selection"] == ["mistral:7b", "llama3.2:3b"]

    def test_zero_gpus_is_kept_for_validation(self):
        args = build_parser().parse_args(["render", "--gpus", "0"])
        assert config_overrides(args)["gpu"] == GpuConfig(enabled=True, count=0)

    def test_no_command(self):
        assert main([]) == 1


class TestCommands:
    """Test command handlers end to end."""

    def test_render_compose(self, host, capsys):
        code = main(["render", "--mode", "advanced", "--domain", "10.0.0.5", "--gpus", "2",
                     "--output", "compose"])
        assert code == 0
        topology = yaml.safe_load(capsys.readouterr().out)
        assert topology["services"]["ollama"]["environment"] == ["CUDA_VISIBLE_DEVICES=0,1"]
        assert "ports" not in topology["services"]["ollama"]

    def test_render_uses_detected_ip(self, host, capsys):
        assert main(["render", "--output", "nginx"]) == 0
        assert "10.0.0.5" in capsys.readouterr().out

    def test_render_invalid_domain(self, host):
        assert main(["render", "--domain", "bad host"]) == 1

    def test_render_rejects_zero_gpus(self, host):
        assert main(["render", "--gpus", "0"]) == 1

    def test_hardware(self, host, capsys):
        assert main(["hardware"]) == 0
        out = capsys.readouterr().out
        assert "all sizes" in out
        assert "RTX 4090" in out

    def test_models_check(self, cpu_only_8gb, capsys):
        with patch("stack_deployer.__main__.HardwareProfiler.profile", return_value=cpu_only_8gb):
            assert main(["models", "check", "llama3.2:3b"]) == 0
            assert main(["models", "check", "llama3.2:3b", "codellama:13b"]) == 1

    def test_detect_fresh(self, no_docker, tmp_path, capsys):
        assert main(["detect", "--base-dir", str(tmp_path)]) == 0
        assert "fresh" in capsys.readouterr().out

    def test_plan(self, host, no_docker, tmp_path, capsys):
        assert main(["plan", "--mode", "advanced", "--base-dir", str(tmp_path / "stack")]) == 0
        assert "full-deploy" in capsys.readouterr().out
        assert not (tmp_path / "stack").exists()

    def test_install_without_deploy(self, host, no_docker, tmp_path):
        base = tmp_path / "stack"
        code = main(["install", "--mode", "simple", "--domain", "10.0.0.5",
                     "--base-dir", str(base), "--no-deploy", "-y"])
        assert code == 0
        assert (base / "docker-compose.yml").is_file()
        assert (base / "conf.d" / "open-webui.conf").is_file()
        assert list((base / "logs").glob("installation_*.log"))

    def test_install_refuses_unconfirmed_models(self, cpu_only_8gb, no_docker, tmp_path):
        with patch("stack_deployer.__main__.HardwareProfiler.profile", return_value=cpu_only_8gb):
            code = main(["install", "--domain", "10.0.0.5", "--base-dir", str(tmp_path / "stack"),
                         "--models", "codellama:13b", "--no-deploy", "-y"])
        assert code == 1
        assert not (tmp_path / "stack" / "docker-compose.yml").exists()

    def test_install_validation_error(self, host, no_docker, tmp_path):
        code = main(["install", "--domain", "", "--base-dir", str(tmp_path / "stack"),
                     "--no-deploy", "-y"])
        assert code == 1
