"""Tests for entitymigrate.references module."""

from pathlib import Path
from textwrap import dedent

from conftest import write
from entitymigrate.changes import ChangeSet
from entitymigrate.models import AliasModelInfo, Reference
from entitymigrate.references import (
    EntitySymbols,
    RewriteTarget,
    analyze_file,
    find_external_references,
    find_usages,
    rewrite_references,
    summarize_references,
    update_file_references,
)

ARTICLE = EntitySymbols("article", "Article", "articleMeta")


class TestRewriteTarget:
    """Tests for per-line rewrite shapes."""

    def test_property_access(self) -> None:
        """Property reads go through the descriptor's model."""
        target = RewriteTarget("ArticleModel", "ArticleDescriptor")
        assert target.match_line("const t = ArticleModel.type;") == [
            ("ArticleModel.type", "ArticleDescriptor.model.type")
        ]

    def test_factory_and_registry_calls(self) -> None:
        target = RewriteTarget("ArticleModel", "ArticleDescriptor")
        found = target.match_line(
            "this.serialiserFactory.create(ArticleModel);"
        )
        assert (
            "serialiserFactory.create(ArticleModel)",
            "serialiserFactory.create(ArticleDescriptor.model)",
        ) in found

    def test_bare_symbol(self) -> None:
        target = RewriteTarget("ArticleModel", "ArticleDescriptor")
        assert target.match_line("models: [ArticleModel, Other]") == [
            ("ArticleModel", "ArticleDescriptor.model")
        ]

    def test_longer_identifiers_do_not_match(self) -> None:
        """Only whole identifiers are rewritten."""
        target = RewriteTarget("ArticleModel", "ArticleDescriptor")
        assert target.match_line("const x = MyArticleModel2;") == []
        assert target.match_line("this.ArticleModel") == []


class TestFindUsages:
    """Tests for usage detection in file bodies."""

    def test_import_lines_are_skipped(self) -> None:
        content = dedent("""\
            import {
              ArticleModel,
            } from "../article/entities/article.model";
            const m = ArticleModel;
        """)
        (usage,) = find_usages(content, ARTICLE, include_meta=True)
        assert usage.line == 4

    def test_reexports_are_skipped(self) -> None:
        """Re-export lines are left for the module owner."""
        content = 'export { ArticleModel } from "./entities/article.model";\n'
        assert find_usages(content, ARTICLE, include_meta=True) == []
        assert analyze_file(Path("index.ts"), content, ARTICLE) is None

    def test_deduplicated_by_text(self) -> None:
        content = "a(ArticleModel);\nb(ArticleModel);\n"
        usages = find_usages(content, ARTICLE, include_meta=True)
        assert [u.line for u in usages] == [1]

    def test_meta_only_when_meta_file_not_imported(self) -> None:
        content = "const n = articleMeta.nodeName;\n"
        assert find_usages(content, ARTICLE, include_meta=False) == []
        (usage,) = find_usages(content, ARTICLE, include_meta=True)
        assert usage.new_text == "ArticleDescriptor.model.nodeName"


class TestAnalyzeFile:
    """Tests for per-file reference plans."""

    def test_consumer(self, project: Path) -> None:
        """One consolidated import replaces both old imports."""
        path = project / "src/features/feed/services/feed.service.ts"
        ref = analyze_file(path, path.read_text(), ARTICLE)

        assert ref is not None
        assert len(ref.old_imports) == 2
        assert ref.new_import == (
            "import { ArticleDescriptor, Article } "
            'from "../../article/entities/article";'
        )
        assert ref.import_path_guessed is False
        assert ref.retained_imports == ("", "")
        assert {u.old_text for u in ref.usages} == {
            "ArticleModel.type",
            "ArticleModel",
        }

    def test_unrelated_file(self) -> None:
        assert analyze_file(Path("a.ts"), "const a = 1;\n", ARTICLE) is None

    def test_meta_import_is_not_old(self) -> None:
        content = dedent("""\
            import { ArticleModel } from "../article/entities/article.model";
            import { articleMeta } from "../article/entities/article.meta";
            const a = [ArticleModel, articleMeta.type];
        """)
        ref = analyze_file(Path("a.ts"), content, ARTICLE)
        assert len(ref.old_imports) == 1
        # meta constants survive when their file is imported directly
        assert all("articleMeta" not in u.old_text for u in ref.usages)

    def test_label_bound_elsewhere_is_not_reimported(self) -> None:
        """The entity type is not imported twice."""
        content = dedent("""\
            import { ArticleModel } from "../article/entities/article.model";
            import { Article } from "../article/types";
            const a: Article = ArticleModel.entity;
        """)
        ref = analyze_file(Path("a.ts"), content, ARTICLE)
        assert ref.new_import == (
            'import { ArticleDescriptor } from "../article/entities/article";'
        )

    def test_guessed_path_without_old_import(self, project: Path) -> None:
        ref = analyze_file(
            Path("a.ts"),
            "const m = ArticleModel;\n",
            ARTICLE,
            project / "src",
        )
        assert ref.import_path_guessed is True
        assert ref.new_import == (
            "import { ArticleDescriptor } "
            'from "src/features/article/entities/article";'
        )

    def test_alias_models(self) -> None:
        symbols = EntitySymbols(
            "user",
            "User",
            "userMeta",
            (AliasModelInfo("AuthorModel", "authorMeta", "AuthorDescriptor"),),
        )
        content = dedent("""\
            import { AuthorModel } from "../user/entities/user.model";
            const m = this.serialiserFactory.create(AuthorModel);
        """)
        ref = analyze_file(Path("a.ts"), content, symbols)
        assert ref.new_import == (
            'import { AuthorDescriptor } from "../user/entities/user";'
        )
        assert ref.usages[0].new_text == (
            "serialiserFactory.create(AuthorDescriptor.model)"
        )


class TestRenamedImports:
    """Old symbols bound under another local name."""

    def test_renamed_model_is_rewritten(self) -> None:
        content = dedent("""\
            import { ArticleModel as Again } from "./article.model";
            const m = this.serialiserFactory.create(Again);
        """)
        ref = analyze_file(Path("a.ts"), content, ARTICLE)
        assert ref.new_import == (
            'import { ArticleDescriptor } from "./article";'
        )
        out = rewrite_references(content, ref)
        assert out.count("import") == 1
        assert "Again" not in out
        assert "serialiserFactory.create(ArticleDescriptor.model)" in out

    def test_renamed_survivor_keeps_alias(self) -> None:
        content = dedent("""\
            import { ArticleModel, ArticleService as Svc } from "../article";
            const m = [ArticleModel, Svc];
        """)
        ref = analyze_file(Path("a.ts"), content, ARTICLE)
        assert ref.retained_imports == (
            'import { ArticleService as Svc } from "../article";',
        )
        assert ref.orphaned_names == ()

    def test_names_from_deleted_file_are_orphaned(self) -> None:
        """A legacy file going away cannot keep other imports alive."""
        content = dedent("""\
            import { ArticleModel, slugify } from "./article.model";
            const m = [ArticleModel, slugify];
        """)
        ref = analyze_file(Path("a.ts"), content, ARTICLE)
        assert ref.retained_imports == ("",)
        assert ref.orphaned_names == ("slugify",)
        out = rewrite_references(content, ref)
        assert "article.model" not in out
        assert out.startswith('import { ArticleDescriptor } from "./article";')


class TestRewriteReferences:
    """Tests for applying reference plans to file content."""

    def test_consumer(self, project: Path) -> None:
        path = project / "src/features/feed/services/feed.service.ts"
        ref = analyze_file(path, path.read_text(), ARTICLE)
        content = update_file_references(path, ref)

        assert content.splitlines()[:3] == [
            'import { Injectable } from "@nestjs/common";',
            "import { ArticleDescriptor, Article } "
            'from "../../article/entities/article";',
            "",
        ]
        assert "article.entity" not in content
        assert (
            "{ model: ArticleDescriptor.model, "
            "type: ArticleDescriptor.model.type }" in content
        )
        # planning does not touch the disk
        assert "ArticleModel" in path.read_text()

    def test_retained_names(self) -> None:
        """Unrelated names from an old import survive."""
        content = dedent("""\
            import { ArticleModel, ArticleService } from "../article";
            const m = ArticleModel;
        """)
        ref = analyze_file(Path("a.ts"), content, ARTICLE)
        assert ref.retained_imports == (
            'import { ArticleService } from "../article";',
        )
        assert rewrite_references(content, ref) == dedent("""\
            import { ArticleService } from "../article";
            import { ArticleDescriptor } from "../article";
            const m = ArticleDescriptor.model;
        """)

    def test_guessed_import_is_inserted(self) -> None:
        content = 'import { A } from "./a";\nconst m = ArticleModel;\n'
        ref = Reference(
            file_path=Path("a.ts"),
            old_imports=(),
            new_import='import { ArticleDescriptor } from "src/x/article";',
            usages=find_usages(content, ARTICLE, include_meta=True),
            import_path_guessed=True,
        )
        assert rewrite_references(content, ref) == (
            'import { A } from "./a";\n'
            'import { ArticleDescriptor } from "src/x/article";\n'
            "const m = ArticleDescriptor.model;\n"
        )

    def test_rewrite_is_idempotent(self, project: Path) -> None:
        """A rewritten file has nothing left to rewrite."""
        path = project / "src/features/feed/services/feed.service.ts"
        ref = analyze_file(path, path.read_text(), ARTICLE)
        once = rewrite_references(path.read_text(), ref)
        assert analyze_file(path, once, ARTICLE) is None


class TestFindExternalReferences:
    """Tests for scanning the source tree."""

    def test_scans_source_root(self, project: Path) -> None:
        module = project / "src/features/article"
        own = [
            p for p in module.rglob("*.ts") if not p.name.endswith(".module.ts")
        ]
        refs = find_external_references(
            "article", "Article", project / "src", exclude_paths=own
        )
        names = sorted(r.file_path.name for r in refs)
        assert names == ["article.module.ts", "feed.service.ts"]

    def test_reads_through_view(self, project: Path) -> None:
        """Pending edits replace what is on disk."""
        feed = project / "src/features/feed/services/feed.service.ts"
        plan = ChangeSet(root=project)
        plan.write(feed, "const a = 1;\n")

        refs = find_external_references(
            "article", "Article", project / "src", view=plan
        )
        assert feed not in [r.file_path for r in refs]
        assert "ArticleModel" in feed.read_text()

    def test_staged_files_are_scanned(self, project: Path) -> None:
        staged = project / "src/features/comment/comment.ts"
        plan = ChangeSet(root=project)
        plan.write(staged, "const m = ArticleModel;\n")

        refs = find_external_references(
            "article", "Article", project / "src", view=plan
        )
        assert staged in [r.file_path for r in refs]
        assert not staged.exists()

    def test_deleted_files_are_skipped(self, project: Path) -> None:
        feed = project / "src/features/feed/services/feed.service.ts"
        plan = ChangeSet(root=project)
        plan.delete(feed)

        refs = find_external_references(
            "article", "Article", project / "src", view=plan
        )
        assert feed not in [r.file_path for r in refs]

    def test_summary(self, project: Path) -> None:
        """Counts cover every referencing file."""
        write(project, "src/features/x/x.ts", "const m = ArticleModel;\n")
        refs = find_external_references(
            "article",
            "Article",
            project / "src",
            exclude_paths=list(
                (project / "src/features/article").rglob("*.ts")
            ),
        )
        summary = summarize_references(refs)
        assert summary["files"] == 2
        assert summary["imports"] == 2
        assert summary["usages"] == 3
        assert summary["guessed_paths"] == [
            str(project / "src/features/x/x.ts")
        ]
