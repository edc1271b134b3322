"""Tests for entitymigrate.migrator module."""

from pathlib import Path

import pytest
from structlog.testing import capture_logs

from conftest import ARTICLE_META, ARTICLE_MODEL, snapshot, write
from entitymigrate import migrator
from entitymigrate.errors import ParseError
from entitymigrate.migrator import EntityMigrator
from entitymigrate.models import EntityState, MigratorOptions

MODULE = Path("src/features/article")

COMMENT = Path("src/features/comment")

COMMENT_ENTITY = """\
import { Entity } from "../../../common/abstracts/entity";
import { Article } from "../../article/entities/article.entity";

export type Comment = Entity & {
  content: string;

  article: Article;
};
"""

COMMENT_MAP = """\
export const mapComment = (params: { data: any; record: any }) => {
  return {
    ...mapEntity({ record: params.data }),
    content: params.data.content,
    article: undefined,
  };
};
"""

COMMENT_SERIALISER = """\
import { Injectable } from "@nestjs/common";
import { ConfigService } from "@nestjs/config";
import { AbstractJsonApiSerialiser } from "../../../common";
import { JsonApiSerialiserFactory } from "../../../common";
import { ArticleModel } from "../../article/entities/article.model";
import { CommentModel } from "../entities/comment.model";

@Injectable()
export class CommentSerialiser extends AbstractJsonApiSerialiser {
  constructor(
    serialiserFactory: JsonApiSerialiserFactory,
    configService: ConfigService,
  ) {
    super(serialiserFactory, configService);
  }

  get type(): string {
    return CommentModel.endpoint;
  }

  create(): JsonApiDataInterface {
    this.attributes = {
      content: "content",
    };

    this.relationships = {
      article: {
        data: this.serialiserFactory.create(ArticleModel),
      },
    };

    return super.create();
  }
}
"""


def add_comment_module(project: Path) -> None:
    """A second legacy entity whose serialiser relates to articles."""
    entities = COMMENT / "entities"
    write(
        project,
        f"{entities}/comment.meta.ts",
        ARTICLE_META.replace("article", "comment").replace(
            "Article", "Comment"
        ),
    )
    write(project, f"{entities}/comment.entity.ts", COMMENT_ENTITY)
    write(
        project,
        f"{entities}/comment.model.ts",
        ARTICLE_MODEL.replace("article", "comment").replace(
            "Article", "Comment"
        ),
    )
    write(project, f"{entities}/comment.map.ts", COMMENT_MAP)
    write(
        project,
        f"{COMMENT}/serialisers/comment.serialiser.ts",
        COMMENT_SERIALISER,
    )


def run_all(project: Path, **options):
    return EntityMigrator(
        MigratorOptions(root=project, all=True, **options)
    ).run()


def run(project: Path, **options):
    return EntityMigrator(
        MigratorOptions(root=project, path=MODULE, **options)
    ).run()


class TestMigrate:
    """End-to-end migration of the article fixture."""

    def test_files_on_disk(self, project: Path) -> None:
        result = run(project)

        assert result.total_entities == 1
        assert result.failure_count == 0
        (entity,) = result.results
        assert entity.state == EntityState.DONE

        files = snapshot(project / MODULE)
        assert sorted(files) == [
            "article.module.ts",
            "entities/article.meta.ts",
            "entities/article.meta.ts.bak",
            "entities/article.ts",
        ]
        assert not (project / MODULE / "serialisers").exists()
        assert files["entities/article.meta.ts.bak"] == ARTICLE_META.encode()

        descriptor = files["entities/article.ts"].decode()
        assert "defineEntity<Article>()({" in descriptor
        assert 'import { articleMeta } from "./article.meta";' in descriptor

        module = files["article.module.ts"].decode()
        assert 'import { ArticleDescriptor } from "./entities/article";' in (
            module
        )
        assert "ArticleSerialiser" not in module
        assert "providers: [ArticleDescriptor.model.serialiser" in module
        assert "modelRegistry.register(ArticleDescriptor.model);" in module

        feed = (
            project / "src/features/feed/services/feed.service.ts"
        ).read_text()
        assert (
            "import { ArticleDescriptor, Article } "
            'from "../../article/entities/article";' in feed
        )
        assert "ArticleModel" not in feed

    def test_plan(self, project: Path) -> None:
        """Backups first, then writes, then deletions."""
        (entity,) = run(project).results
        planned = [
            (c.type, c.path.relative_to(project).as_posix())
            for c in entity.changes
        ]
        assert planned == [
            ("create", f"{MODULE}/entities/article.meta.ts.bak"),
            ("update", f"{MODULE}/entities/article.meta.ts"),
            ("create", f"{MODULE}/entities/article.ts"),
            ("update", f"{MODULE}/article.module.ts"),
            ("update", "src/features/feed/services/feed.service.ts"),
            ("delete", f"{MODULE}/entities/article.model.ts"),
            ("delete", f"{MODULE}/entities/article.map.ts"),
            ("delete", f"{MODULE}/serialisers/article.serialiser.ts"),
            ("delete", f"{MODULE}/entities/article.entity.ts"),
        ]

    def test_skip_backup(self, project: Path) -> None:
        run(project, skip_backup=True)
        assert not (project / MODULE / "entities/article.meta.ts.bak").exists()

    def test_second_run_is_noop(self, project: Path) -> None:
        """A migrated module is detected and left alone."""
        run(project)
        before = snapshot(project)
        (entity,) = run(project).results

        assert entity.state == EntityState.ALREADY_MIGRATED
        assert entity.success is True
        assert entity.changes == []
        assert snapshot(project) == before

    def test_diagnostics(self, project: Path) -> None:
        (entity,) = run(project).results
        assert [d.level for d in entity.diagnostics] == ["info"]
        assert entity.warnings == []


class TestDryRun:
    """Tests for planning without writing."""

    def test_nothing_written(self, project: Path) -> None:
        """A dry run leaves the tree byte-identical."""
        before = snapshot(project)
        result = run(project, dry_run=True)
        assert result.dry_run is True
        assert result.results[0].state == EntityState.DONE
        assert snapshot(project) == before

    def test_same_plan_as_real_run(self, project: Path) -> None:
        dry = run(project, dry_run=True).results[0].changes
        real = run(project).results[0].changes
        assert dry == real

    def test_same_plan_for_dependent_entities(self, project: Path) -> None:
        """Later entities see earlier pending edits in a dry run."""
        add_comment_module(project)
        before = snapshot(project)
        dry = run_all(project, dry_run=True)
        assert snapshot(project) == before
        real = run_all(project)

        assert [r.entity_name for r in dry.results] == ["article", "comment"]
        assert dry.failure_count == 0
        assert [r.changes for r in dry.results] == [
            r.changes for r in real.results
        ]

        descriptor = project / COMMENT / "entities/comment.ts"
        assert "model: ArticleDescriptor.model," in descriptor.read_text()
        (planned,) = [
            c for c in dry.results[1].changes if c.path == descriptor
        ]
        assert "model: ArticleDescriptor.model," in planned.content

    def test_logs_would_events(self, project: Path) -> None:
        with capture_logs() as logs:
            run(project, dry_run=True)
        events = [e["event"] for e in logs]
        assert "would create" in events
        assert "would delete" in events
        assert "would remove directory" in events
        assert "created" not in events


class TestIsolation:
    """Tests for per-entity failure handling."""

    def test_failing_entity_does_not_stop_others(
        self, project: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """One entity failing does not abort the run."""
        write(
            project,
            f"{MODULE}/entities/draft.meta.ts",
            ARTICLE_META.replace("article", "draft").replace(
                "Article", "Draft"
            ),
        )
        real_parse = migrator.parse_entity

        def parse(files, view=None):
            if files.entity_name == "draft":
                raise ParseError(files.meta, "unreadable")
            return real_parse(files, view)

        monkeypatch.setattr(migrator, "parse_entity", parse)
        result = run(project)

        assert [r.entity_name for r in result.results] == ["article", "draft"]
        assert result.success_count == 1
        (failed,) = result.failures
        assert failed.state == EntityState.FAILED
        assert "unreadable" in failed.error
        assert (project / MODULE / "entities/article.ts").is_file()

    def test_unknown_module(self, project: Path) -> None:
        result = EntityMigrator(
            MigratorOptions(root=project, path=Path("src/features/nope"))
        ).run()
        assert result.total_entities == 0

    def test_requires_path_or_all(self, project: Path) -> None:
        with pytest.raises(ValueError):
            EntityMigrator(MigratorOptions(root=project)).run()


class TestQueriesAndWarnings:
    """Service query text feeding the migration."""

    def test_extracted_edge_overrides_heuristic(self, project: Path) -> None:
        write(
            project,
            f"{MODULE}/services/article.service.ts",
            "const q = `MATCH (article:Article)<-[:WROTE]-(author:User)`;\n",
        )
        run(project)
        descriptor = (project / MODULE / "entities/article.ts").read_text()
        assert 'relationship: "WROTE",' in descriptor
        assert 'relationship: "PUBLISHED",' not in descriptor

    def test_service_warning(self, project: Path) -> None:
        service = write(
            project,
            f"{MODULE}/services/article.service.ts",
            "const q = `RETURN article, COUNT(topic) AS total`;\n",
        )
        (entity,) = run(project).results
        (warning,) = entity.warnings
        assert warning.path == service
        assert "aggregates" in warning.message
        assert warning.entity == "article"

    def test_guessed_import_warning(self, project: Path) -> None:
        """A reference without an old import gets a guessed path."""
        stray = write(
            project, "src/features/x/x.ts", "export const m = ArticleModel;\n"
        )
        (entity,) = run(project).results
        (warning,) = entity.warnings
        assert warning.path == stray
        assert "import path guessed" in warning.message
        assert stray.read_text().startswith("import { ArticleDescriptor }")

    def test_orphaned_import_warning(self, project: Path) -> None:
        """Other names imported from a deleted legacy file are reported."""
        consumer = write(
            project,
            "src/features/x/x.ts",
            'import { ArticleModel, slugify } from "../article/entities/'
            'article.model";\n'
            "export const m = [ArticleModel, slugify];\n",
        )
        (entity,) = run(project).results
        (warning,) = entity.warnings
        assert warning.path == consumer
        assert warning.message.startswith("slugify imported from a legacy")
        content = consumer.read_text()
        assert "article.model" not in content
        assert content.startswith(
            'import { ArticleDescriptor } from "../article/entities/article";'
        )


class TestMigrateAll:
    """Tests for migrating every module."""

    def test_walks_source_root(self, project: Path) -> None:
        write(
            project,
            "src/foundations/tag/entities/tag.meta.ts",
            ARTICLE_META.replace("article", "tag").replace("Article", "Tag"),
        )
        result = EntityMigrator(
            MigratorOptions(root=project, all=True, dry_run=True)
        ).run()
        assert [r.entity_name for r in result.results] == ["article", "tag"]
        assert result.failure_count == 0
