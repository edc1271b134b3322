"""Tests for entitymigrate.parser module."""

from pathlib import Path
from textwrap import dedent

import pytest

from conftest import ARTICLE_MAP, ARTICLE_SERIALISER
from entitymigrate.discovery import build_file_set
from entitymigrate.errors import MissingMetaFileError
from entitymigrate.models import EntityFileSet, ParsedMeta
from entitymigrate.parser import (
    is_relationship_type,
    normalize_type,
    parse_alias_models,
    parse_entity,
    parse_entity_text,
    parse_map_text,
    parse_meta_declarations,
    parse_meta_text,
    parse_serialiser_text,
    split_alias_metas,
)


class TestParseMeta:
    """Tests for meta file parsing."""

    def test_single_declaration(self) -> None:
        """A meta file with one constant yields its four strings."""
        meta = parse_meta_text(
            dedent("""
            export const articleMeta: DataMeta = {
              type: "articles",
              endpoint: `articles`,
              nodeName: "article",
              labelName: "Article",
            };
            """)
        )
        assert meta == ParsedMeta("articles", "articles", "article", "Article")
        assert meta.is_complete

    def test_missing_key_is_empty(self) -> None:
        meta = parse_meta_text('export const m = { type: "x", nodeName: "y" };')
        assert meta.endpoint == ""
        assert meta.label_name == ""
        assert not meta.is_complete

    def test_alias_spreads_are_resolved(self) -> None:
        """Alias constants spreading the primary inherit its values."""
        source = dedent("""
            export const userMeta: DataMeta = {
              type: "users",
              endpoint: "users",
              nodeName: "user",
              labelName: "User",
            };

            export const authorMeta: DataMeta = {
              ...userMeta,
              nodeName: "author",
            };
        """)
        declarations = parse_meta_declarations(source)
        assert [name for name, _ in declarations] == ["userMeta", "authorMeta"]
        author = declarations[1][1]
        assert author.type == "users"
        assert author.label_name == "User"
        assert author.node_name == "author"

        primary = parse_meta_text(source)
        assert primary.node_name == "user"
        assert split_alias_metas(source, primary) == (("authorMeta", author),)


class TestParseEntityType:
    """Tests for the type definition parser."""

    def test_fields_and_relationships(self) -> None:
        """Scalars and relationship-typed members are split."""
        parsed = parse_entity_text(
            dedent("""
            import { Topic } from "../../topic/entities/topic.entity";
            import { ArticleStatus } from "../enums/article.status";

            export type Article = Entity & {
              title: string;
              tags?: string[];
              status: ArticleStatus;
              publishedAt: Date | null;
              extra: Record<string, any>;

              topics: Topic[];
              owner?: User;
            };
            """)
        )
        assert parsed.name == "Article"
        assert [(f.name, f.optional) for f in parsed.fields] == [
            ("title", False),
            ("tags", True),
            ("status", False),
            ("publishedAt", False),
            ("extra", False),
        ]
        assert [f.name for f in parsed.relationship_fields] == [
            "topics",
            "owner",
        ]
        assert len(parsed.imports) == 2

    def test_members_without_semicolons(self) -> None:
        parsed = parse_entity_text(
            dedent("""
            export type Note = Entity & {
              title: string
              meta: {
                a: string;
                b: number;
              }
              count?: number
            };
            """)
        )
        assert [f.name for f in parsed.fields] == ["title", "meta", "count"]
        assert parsed.fields[1].type.startswith("{")

    def test_no_type_block_uses_fallback_name(self) -> None:
        parsed = parse_entity_text("export interface X {}", "Fallback")
        assert parsed.name == "Fallback"
        assert parsed.fields == ()

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("string | null", "string"),
            ("Date | undefined", "Date"),
            ("Array<Topic>", "Topic[]"),
            ("number", "number"),
        ],
    )
    def test_normalize_type(self, text: str, expected: str) -> None:
        assert normalize_type(text) == expected

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("User", True),
            ("Topic[]", True),
            ("Array<Topic>", True),
            ("Date", False),
            ("AiStatus", False),
            ("string", False),
            ("Record<string, any>", False),
        ],
    )
    def test_is_relationship_type(self, text: str, expected: bool) -> None:
        assert is_relationship_type(text) is expected


class TestParseMap:
    """Tests for mapper parsing."""

    def test_data_paths_and_computed(self) -> None:
        """Mapper entries reading params.data are plain fields."""
        fields = {f.name: f for f in parse_map_text(ARTICLE_MAP)}
        assert fields["title"].is_computed is False
        assert fields["title"].mapping == "params.data.title"
        assert fields["relevance"].is_computed is True
        assert fields["relevance"].mapping.startswith("params.record.get(")
        # neither a data path nor computed
        assert "author" not in fields

    def test_arrow_returning_object(self) -> None:
        fields = parse_map_text(
            "export const m = (params) => ({ "
            "score: params.record.get('score')?.low ?? 0 });"
        )
        assert [(f.name, f.is_computed) for f in fields] == [("score", True)]

    def test_no_returned_object(self) -> None:
        assert parse_map_text("export const m = 1;") == ()


class TestParseSerialiser:
    """Tests for serialiser parsing."""

    def test_article_serialiser(self) -> None:
        parsed = parse_serialiser_text(ARTICLE_SERIALISER)

        assert parsed.attribute_names == frozenset(
            {"title", "body", "aiStatus"}
        )
        assert parsed.meta_names == frozenset({"relevance"})
        assert [t.field_name for t in parsed.s3_transforms] == ["coverImage"]
        assert parsed.s3_transforms[0].is_array is False
        assert parsed.services == ("S3Service",)
        assert parsed.custom_methods == ()

        rels = {r.name: r for r in parsed.relationships}
        assert rels["author"].model_import == "UserModel"
        assert rels["author"].dto_key is None
        assert rels["topics"].model_import == "TopicModel"
        assert rels["topics"].dto_key == "topics"
        assert len(parsed.imports) == 8

    def test_array_and_public_transforms(self) -> None:
        parsed = parse_serialiser_text(
            dedent("""
            export class GallerySerialiser {
              create() {
                this.attributes = {
                  images: async (data) => {
                    return await Promise.all(
                      data.images.map((url) =>
                        this.s3.generateSignedUrl({ key: url }),
                      ),
                    );
                  },
                  logo: async (data) =>
                    this.s3.generateSignedUrl({
                      key: data.logo,
                      isPublic: true,
                    }),
                };
              }
            }
            """)
        )
        by_name = {t.field_name: t for t in parsed.s3_transforms}
        assert by_name["images"].is_array is True
        assert by_name["images"].is_public is False
        assert by_name["logo"].is_array is False
        assert by_name["logo"].is_public is True

    def test_custom_methods(self) -> None:
        """Methods beyond the standard ones are reported."""
        parsed = parse_serialiser_text(
            dedent("""
            export class ThingSerialiser {
              constructor(private readonly factory: SerialiserFactory) {}

              get type(): string {
                return "things";
              }

              create() {
                return this.buildPayload();
              }

              private buildPayload(): object {
                return {};
              }

              async summarise(data: Thing): Promise<string> {
                return data.name;
              }
            }
            """)
        )
        assert parsed.custom_methods == ("buildPayload", "summarise")
        assert parsed.services == ()

    def test_dto_key_differs_from_name(self) -> None:
        parsed = parse_serialiser_text(
            dedent("""
            class S {
              create() {
                this.relationships = {
                  content: {
                    name: "items",
                    data: this.serialiserFactory.create(ContentModel),
                  },
                };
              }
            }
            """)
        )
        (rel,) = parsed.relationships
        assert rel.name == "content"
        assert rel.dto_key == "items"


class TestParseAliasModels:
    """Tests for alias model detection."""

    def test_alias_found(self) -> None:
        aliases = parse_alias_models(
            dedent("""
            export const UserModel: DataModelInterface<User> = {
              ...userMeta,
              mapper: mapUser,
            };

            export const AuthorModel: DataModelInterface<User> = {
              ...UserModel,
              ...authorMeta,
            };
            """),
            "UserModel",
            "userMeta",
        )
        assert len(aliases) == 1
        assert aliases[0].model_name == "AuthorModel"
        assert aliases[0].meta_name == "authorMeta"
        assert aliases[0].descriptor_name == "AuthorDescriptor"


class TestParseEntity:
    """Tests for parse_entity."""

    def test_article(self, article_module: Path) -> None:
        files = build_file_set(article_module / "entities/article.meta.ts")
        parsed = parse_entity(files)

        assert parsed.meta.label_name == "Article"
        assert parsed.entity_type.name == "Article"
        assert [f.name for f in parsed.entity_type.relationship_fields] == [
            "author",
            "topics",
        ]
        assert any(f.is_computed for f in parsed.mapper)
        assert parsed.serialiser.s3_transforms
        assert parsed.alias_models == ()
        assert parsed.alias_metas == ()

    def test_missing_meta_raises(self, tmp_path: Path) -> None:
        """An entity without a meta file cannot be parsed."""
        files = EntityFileSet(
            entity_name="ghost",
            entity_dir=tmp_path,
            meta=tmp_path / "ghost.meta.ts",
            module_path=tmp_path,
        )
        with pytest.raises(MissingMetaFileError, match="ghost"):
            parse_entity(files)
