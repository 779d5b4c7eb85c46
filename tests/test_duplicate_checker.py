"""
@description 重复文件检测与文件校验测试
@responsibility 验证名称+大小查重、扩展名和大小校验
"""

from app.services.duplicate_checker import (
    check,
    check_by_name_and_size,
    get_extension,
    is_allowed_file_type,
    is_within_size_limit,
    validate_file,
)


class TestDuplicateCheck:
    """测试查重"""

    def test_same_name_and_size(self):
        """名称忽略大小写且大小一致时判定重复"""
        assets = [{"id": "a1", "name": "Report.PDF", "file_size": "2048"}]
        result = check_by_name_and_size({"title": "report.pdf", "size": 2048}, assets)

        assert result.is_duplicate is True
        assert result.matched_asset["id"] == "a1"

    def test_same_name_different_size(self):
        assets = [{"name": "report.pdf", "file_size": 1000}]
        result = check_by_name_and_size({"title": "report.pdf", "size": 2048}, assets)

        assert result.is_duplicate is False
        assert result.matched_asset is None

    def test_no_assets(self):
        assert check({"title": "a.txt", "size": 1}, []).is_duplicate is False

    def test_hash_strategy_never_matches(self):
        """monday 不提供哈希，内容哈希策略不会判定重复"""
        assets = [{"name": "other.txt", "file_size": 3}]
        result = check({"title": "a.txt", "size": 3}, assets, content=b"abc")

        assert result.is_duplicate is False


class TestValidation:
    """测试上传前校验"""

    def test_extension(self):
        assert get_extension("Archive.TAR.GZ") == "gz"
        assert get_extension("README") == ""

    def test_allowed_types(self):
        assert is_allowed_file_type("a.pdf", None) is True
        assert is_allowed_file_type("a.PDF", ["pdf", "png"]) is True
        assert is_allowed_file_type("a.exe", ["pdf", "png"]) is False

    def test_size_limit(self):
        assert is_within_size_limit(100, 100) is True
        assert is_within_size_limit(101, 100) is False

    def test_validate_file_ok(self):
        assert validate_file({"title": "a.pdf", "size": 10}, 100, ["pdf"]) is None

    def test_validate_file_too_large(self):
        reason = validate_file({"title": "a.pdf", "size": 200}, 100)
        assert "超过上限" in reason

    def test_validate_file_wrong_type(self):
        reason = validate_file(
            {"title": "setup.exe", "size": 10, "extension": "exe"}, 100, ["pdf"]
        )
        assert reason == "不允许的文件类型: exe"
