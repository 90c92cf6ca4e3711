# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

import pytest

from app.core.exceptions import UpstreamUnavailable
from app.core.result import Result


@pytest.mark.unit
class TestResult:
    def test_success(self):
        result = Result.success({"a": 1})

        assert result.ok
        assert result.unwrap() == {"a": 1}

    def test_success_without_value(self):
        assert Result.success().ok
        assert Result.success().value is None

    def test_failure_unwrap_raises(self):
        error = UpstreamUnavailable("cache down")
        result = Result.failure(error)

        assert not result.ok
        assert result.error is error
        with pytest.raises(UpstreamUnavailable):
            result.unwrap()
