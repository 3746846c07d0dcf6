from conftest import descriptor_blob, suite_record

from suitey.descriptors import InvalidSuite, SuiteConfig, parse_descriptors, split_records


def test_empty_input_yields_no_records():
    parsed = parse_descriptors("")
    assert parsed.total == 0
    assert parsed.results == ()


def test_text_without_suite_id_is_not_a_record():
    parsed = parse_descriptors("this is not a descriptor\nfoo=bar\n")
    assert parsed.total == 0


def test_parses_single_valid_record():
    parsed = parse_descriptors(suite_record("unit", cpu_cores=2, command="make test"))

    assert parsed.total == 1
    assert parsed.results[0] == SuiteConfig(
        suite_id="unit",
        test_command="make test",
        test_image="alpine:3.19",
        working_directory="/app",
        cpu_cores=2,
    )


def test_consecutive_suite_id_lines_start_new_records():
    text = "\n".join([suite_record("a"), suite_record("b"), suite_record("c")])
    parsed = parse_descriptors(text)

    assert [r.suite_id for r in parsed.results] == ["a", "b", "c"]
    assert all(isinstance(r, SuiteConfig) for r in parsed.results)


def test_separator_lines_delimit_records():
    text = suite_record("a") + "\n---\n" + suite_record("b")
    parsed = parse_descriptors(text)
    assert [r.suite_id for r in parsed.results] == ["a", "b"]


def test_command_keeps_equals_signs():
    parsed = parse_descriptors(suite_record("env", command="FOO=bar pytest -k 'x=1'"))
    assert parsed.results[0].test_command == "FOO=bar pytest -k 'x=1'"


def test_missing_field_is_invalid_but_counted():
    text = descriptor_blob(
        "suite_id=broken\ntest_command=pytest\ncpu_cores=1",
        suite_record("ok"),
    )
    parsed = parse_descriptors(text)

    assert parsed.total == 2
    broken = parsed.results[0]
    assert isinstance(broken, InvalidSuite)
    assert broken.suite_id == "broken"
    assert "test_image" in broken.reason
    assert "working_directory" in broken.reason
    assert isinstance(parsed.results[1], SuiteConfig)


def test_empty_suite_id_is_invalid():
    parsed = parse_descriptors("suite_id=\ntest_command=x\ntest_image=i\nworking_directory=/w\ncpu_cores=1")
    assert parsed.total == 1
    assert isinstance(parsed.results[0], InvalidSuite)
    assert "suite_id" in parsed.results[0].reason


def test_cpu_cores_must_be_positive_integer():
    text = descriptor_blob(
        suite_record("zero", cpu_cores=0),
        suite_record("negative", cpu_cores=-2),
        suite_record("word", cpu_cores="two"),
        suite_record("float", cpu_cores="1.5"),
    )
    parsed = parse_descriptors(text)

    assert parsed.total == 4
    assert all(isinstance(r, InvalidSuite) for r in parsed.results)
    assert all("cpu_cores" in r.reason for r in parsed.results)


def test_relative_working_directory_is_invalid():
    parsed = parse_descriptors(suite_record("rel", workdir="src/tests"))
    assert isinstance(parsed.results[0], InvalidSuite)
    assert "working_directory" in parsed.results[0].reason


def test_duplicate_suite_id_is_invalid():
    parsed = parse_descriptors(descriptor_blob(suite_record("dup"), suite_record("dup")))

    assert parsed.total == 2
    assert isinstance(parsed.results[0], SuiteConfig)
    assert isinstance(parsed.results[1], InvalidSuite)
    assert "duplicate" in parsed.results[1].reason


def test_unknown_keys_are_ignored():
    text = suite_record("extra") + "\nframework=bats\npriority=high"
    parsed = parse_descriptors(text)
    assert isinstance(parsed.results[0], SuiteConfig)


def test_crlf_and_whitespace_are_tolerated():
    text = suite_record("win").replace("\n", "\r\n").replace("=", " = ")
    parsed = parse_descriptors(text)
    assert parsed.results[0] == SuiteConfig(
        suite_id="win",
        test_command="echo ok",
        test_image="alpine:3.19",
        working_directory="/app",
        cpu_cores=1,
    )


def test_input_order_is_preserved_with_invalid_records():
    text = descriptor_blob(
        suite_record("first"),
        suite_record("second", cpu_cores=0),
        suite_record("third"),
    )
    parsed = parse_descriptors(text)

    assert [r.suite_id for r in parsed.results] == ["first", "second", "third"]
    assert [r.suite_id for r in parsed.valid] == ["first", "third"]
    assert [r.suite_id for r in parsed.invalid] == ["second"]


def test_split_records_drops_lines_after_separator():
    records = split_records("suite_id=a\nx=1\n\norphan=2\nsuite_id=b\n")
    assert records == [{"suite_id": "a", "x": "1"}, {"suite_id": "b"}]
