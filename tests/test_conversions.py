from __future__ import annotations

from cratetally.matchers.conversions import ConversionMatcher
from cratetally.parsing import RustParser, SyntaxTree
from cratetally.schemas import ConversionRecord, SourceFile


def _tree(source: str, path: str = "src/lib.rs") -> SyntaxTree:
    return RustParser().parse(SourceFile(package="demo", path=path, text=source.encode("utf-8")))


def _match(*files: tuple[str, str], **options) -> list[ConversionRecord]:
    matcher = ConversionMatcher("demo", **options)
    for path, source in files:
        matcher.collect(_tree(source, path))
    return matcher.finish()


def test_newtype_with_from_impl_has_conversion() -> None:
    records = _match(
        (
            "src/lib.rs",
            "pub struct Meters(pub f64);\n\n"
            "impl From<f64> for Meters {\n    fn from(value: f64) -> Self { Meters(value) }\n}\n",
        )
    )

    assert len(records) == 1
    assert records[0].struct_name == "Meters"
    assert records[0].field_type == "f64"
    assert records[0].has_conversion is True
    assert records[0].category == "has-conversion"
    assert records[0].line == 1


def test_newtype_without_impl_has_no_conversion() -> None:
    records = _match(("src/lib.rs", "struct UserId(u64);\n"))

    assert [(item.struct_name, item.has_conversion) for item in records] == [("UserId", False)]
    assert records[0].category == "no-conversion"


def test_two_field_and_named_structs_are_not_candidates() -> None:
    records = _match(
        (
            "src/lib.rs",
            "struct Point(i32, i32);\nstruct Named { value: u32 }\nstruct Unit;\n"
            "impl From<i32> for Point { fn from(v: i32) -> Self { Point(v, v) } }\n",
        )
    )

    assert records == []


def test_impl_for_a_different_field_type_does_not_count() -> None:
    records = _match(
        (
            "src/lib.rs",
            "struct UserId(u64);\nimpl From<u32> for UserId { fn from(v: u32) -> Self { UserId(v as u64) } }\n",
        )
    )

    assert records[0].has_conversion is False


def test_impl_in_another_file_is_joined() -> None:
    records = _match(
        ("src/lib.rs", "mod convert;\npub struct Label(String);\n"),
        (
            "src/convert.rs",
            "impl std::convert::From<String> for crate::Label {\n"
            "    fn from(value: String) -> Self { Label(value) }\n}\n",
        ),
    )

    assert [(item.file, item.struct_name, item.has_conversion) for item in records] == [
        ("src/lib.rs", "Label", True)
    ]


def test_type_signature_ignores_formatting() -> None:
    records = _match(
        (
            "src/lib.rs",
            "struct Bytes(Vec<u8>);\nimpl From< Vec < u8 > > for Bytes { fn from(v: Vec<u8>) -> Self { Bytes(v) } }\n",
        )
    )

    assert records[0].has_conversion is True
    assert records[0].field_type == "Vec<u8>"


def test_generic_newtype_and_nested_module() -> None:
    records = _match(
        (
            "src/lib.rs",
            "mod inner {\n"
            "    pub struct Wrapper<T>(T);\n"
            "    impl<T> From<T> for Wrapper<T> { fn from(v: T) -> Self { Wrapper(v) } }\n"
            "}\n"
            "fn build() {\n    struct Local(bool);\n}\n",
        )
    )

    assert [(item.struct_name, item.has_conversion) for item in records] == [
        ("Wrapper", True),
        ("Local", False),
    ]


def test_type_alias_is_a_false_negative() -> None:
    records = _match(
        (
            "src/lib.rs",
            "type Raw = u64;\nstruct Id(Raw);\nimpl From<u64> for Id { fn from(v: u64) -> Self { Id(v) } }\n",
        )
    )

    assert records[0].has_conversion is False


def test_other_traits_are_ignored() -> None:
    records = _match(
        (
            "src/lib.rs",
            "struct Id(u64);\nimpl Into<u64> for Id { fn into(self) -> u64 { self.0 } }\n"
            "impl TryFrom<u64> for Id { type Error = (); fn try_from(v: u64) -> Result<Self, ()> { Ok(Id(v)) } }\n",
        )
    )

    assert records[0].has_conversion is False


def test_skip_derived_option_drops_derived_structs() -> None:
    source = "#[derive(Debug)]\nstruct Tagged(u8);\n/// docs\nstruct Plain(u8);\n"

    assert len(_match(("src/lib.rs", source))) == 2
    records = _match(("src/lib.rs", source), skip_derived=True)
    assert [item.struct_name for item in records] == ["Plain"]
