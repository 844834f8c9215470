# tests/test_config_handler.py

import pytest
import os
import json
from unittest.mock import mock_open, patch

from universe_terminal import config_handler
from universe_terminal.errors import ConfigurationError

# --- Test Cases for load_jsonc_file ---

@patch("os.path.exists", return_value=True)
def test_load_jsonc_with_single_line_comments(mock_exists):
    """Tests loading a JSONC file with // style comments."""
    jsonc_content = """
    {
        // Directory the sandbox is rooted at
        "sandbox_root": "~/.universe_terminal/home", // Another comment
        "max_suggestions": 5
    }
    """
    expected_dict = {"sandbox_root": "~/.universe_terminal/home", "max_suggestions": 5}

    with patch("builtins.open", mock_open(read_data=jsonc_content)) as mock_file:
        result = config_handler.load_jsonc_file("dummy/path.jsonc")
        mock_file.assert_called_once_with("dummy/path.jsonc", 'r', encoding='utf-8')
        assert result == expected_dict

@patch("os.path.exists", return_value=True)
def test_load_jsonc_with_multi_line_comments(mock_exists):
    """Tests loading a JSONC file with /* */ style comments."""
    jsonc_content = """
    {
        /* Optional command classifier
         * backed by a local model */
        "model": "llama3.2:3b",
        "enabled": false /* Off by default */
    }
    """
    with patch("builtins.open", mock_open(read_data=jsonc_content)):
        result = config_handler.load_jsonc_file("dummy/path.jsonc")
        assert result == {"model": "llama3.2:3b", "enabled": False}

@patch("os.path.exists", return_value=True)
def test_load_jsonc_keeps_comment_markers_inside_strings(mock_exists):
    """URLs and glob-like values must survive comment stripping."""
    jsonc_content = """
    {
        "host": "http://localhost:11434", // the Ollama server
        "pattern": "/tmp/*.log",
        "quoted": "say \\"hi\\" // not a comment"
    }
    """
    with patch("builtins.open", mock_open(read_data=jsonc_content)):
        result = config_handler.load_jsonc_file("dummy/path.jsonc")
        assert result == {
            "host": "http://localhost:11434",
            "pattern": "/tmp/*.log",
            "quoted": 'say "hi" // not a comment',
        }

@patch("os.path.exists", return_value=True)
def test_load_jsonc_with_malformed_json(mock_exists):
    """Tests loading a file with a JSON syntax error."""
    malformed_content = '{"key": "value",}' # Trailing comma

    with patch("builtins.open", mock_open(read_data=malformed_content)):
        result = config_handler.load_jsonc_file("dummy/path.jsonc")
        assert result is None

@patch("os.path.exists", return_value=False)
def test_load_jsonc_file_not_found(mock_exists):
    """Tests loading a file that does not exist."""
    result = config_handler.load_jsonc_file("non/existent/path.jsonc")
    assert result is None

# --- Test Cases for save_json_file ---

@patch("os.makedirs")
def test_save_json_file_success(mock_makedirs):
    """json.dump writes in several chunks, so the written content is reassembled before comparing."""
    data_to_save = {"experience": 120, "achievements": {"Editor": "Used a text editor"}}
    expected_json_string = json.dumps(data_to_save, indent=2, sort_keys=True)

    m = mock_open()
    with patch("builtins.open", m):
        success = config_handler.save_json_file("dummy/progress.json", data_to_save)

    assert success is True
    mock_makedirs.assert_called_once_with(os.path.dirname("dummy/progress.json"), exist_ok=True)
    m.assert_called_once_with("dummy/progress.json", 'w', encoding='utf-8')

    handle = m()
    written_content = "".join(call.args[0] for call in handle.write.call_args_list)
    assert written_content == expected_json_string

@patch("os.makedirs")
def test_save_json_file_io_error(mock_makedirs):
    """Tests handling of an IOError during file save."""
    m = mock_open()
    m.side_effect = IOError("Permission denied")

    with patch("builtins.open", m):
        success = config_handler.save_json_file("dummy/protected.json", {"key": "value"})

    assert success is False

@patch("os.makedirs")
def test_save_json_file_type_error(mock_makedirs):
    """Tests handling of non-serializable data."""
    m = mock_open()
    with patch("builtins.open", m):
        success = config_handler.save_json_file("dummy/output.json", {"unserializable": {1, 2, 3}})

    assert success is False

# --- Merging and lookup ---

def test_merge_configs_is_recursive_and_does_not_mutate_base():
    base = {"timeouts": {"command_execution_seconds": 60, "monitor_interval_seconds": 1}, "ui": {"show_advisories": True}}
    override = {"timeouts": {"command_execution_seconds": 5}, "logging": {"level": "INFO"}}

    merged = config_handler.merge_configs(base, override)

    assert merged == {
        "timeouts": {"command_execution_seconds": 5, "monitor_interval_seconds": 1},
        "ui": {"show_advisories": True},
        "logging": {"level": "INFO"},
    }
    assert base["timeouts"]["command_execution_seconds"] == 60

def test_get_config_value_walks_dot_paths():
    config = {"advisory": {"max_suggestions": 5}, "paths": None}
    assert config_handler.get_config_value(config, "advisory.max_suggestions") == 5
    assert config_handler.get_config_value(config, "advisory.missing", "fallback") == "fallback"
    assert config_handler.get_config_value(config, "paths.sandbox_root", "x") == "x"

# --- load_configuration ---

def test_load_configuration_merges_user_overrides(tmp_path):
    (tmp_path / config_handler.DEFAULT_CONFIG_FILENAME).write_text(
        '// defaults\n{"timeouts": {"command_execution_seconds": 60}, "ui": {"max_prompt_length": 20}}')
    (tmp_path / config_handler.USER_CONFIG_FILENAME).write_text(
        '{"timeouts": {"command_execution_seconds": 10}}')

    config = config_handler.load_configuration(str(tmp_path))

    assert config["timeouts"]["command_execution_seconds"] == 10
    assert config["ui"]["max_prompt_length"] == 20

def test_load_configuration_without_user_file(tmp_path):
    (tmp_path / config_handler.DEFAULT_CONFIG_FILENAME).write_text('{"ui": {}}')
    assert config_handler.load_configuration(str(tmp_path)) == {"ui": {}}

def test_load_configuration_missing_default_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        config_handler.load_configuration(str(tmp_path))

def test_bundled_default_config_parses():
    """The shipped config files must stay valid JSONC."""
    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
    config = config_handler.load_configuration(os.path.join(project_root, "config"))
    assert config["timeouts"]["command_execution_seconds"] == 60
    assert config["classifier"]["host"] == "http://localhost:11434"

    catalog = config_handler.load_jsonc_file(os.path.join(project_root, "config", "default_command_catalog.json"))
    assert any(entry["name"] == "ls" for entry in catalog["commands"])
