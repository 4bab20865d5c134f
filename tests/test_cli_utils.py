from __future__ import annotations

import argparse
import logging

import pytest

from iopscreen._cli_utils import add_log_level_argument, parse_log_level, parse_model_id


def test_parse_model_id():
    assert parse_model_id("mobilenetv2") == "iop-mobilenetv2"
    with pytest.raises(argparse.ArgumentTypeError):
        parse_model_id("vgg16")


def test_parse_log_level():
    assert parse_log_level("debug") == logging.DEBUG
    assert parse_log_level(" Warning ") == logging.WARNING
    with pytest.raises(argparse.ArgumentTypeError):
        parse_log_level("verbose")


def test_log_level_argument_default():
    parser = argparse.ArgumentParser()
    add_log_level_argument(parser, default="INFO")

    assert parser.parse_args([]).log_level == logging.INFO
    assert parser.parse_args(["--log-level", "error"]).log_level == logging.ERROR
