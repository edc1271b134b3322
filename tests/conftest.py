"""Shared fixtures: a small legacy TypeScript project on disk."""

from pathlib import Path
from textwrap import dedent

import pytest

ARTICLE_META = """\
import { DataMeta } from "@carlonicora/nestjs-neo4jsonapi";

export const articleMeta: DataMeta = {
  type: "articles",
  endpoint: "articles",
  nodeName: "article",
  labelName: "Article",
};
"""

ARTICLE_ENTITY = """\
import { Entity } from "../../../common/abstracts/entity";
import { AiStatus } from "../../../common/enums/ai.status";
import { User } from "../../../foundations/user/entities/user.entity";
import { Topic } from "../../topic/entities/topic.entity";

export type Article = Entity & {
  title: string;
  body?: string;
  coverImage?: string;
  aiStatus: AiStatus;
  relevance?: number;

  author: User;
  topics: Topic[];
};
"""

ARTICLE_MODEL = """\
import { DataModelInterface } from "../../../common";
import { Article } from "./article.entity";
import { mapArticle } from "./article.map";
import { articleMeta } from "./article.meta";
import { ArticleSerialiser } from "../serialisers/article.serialiser";

export const ArticleModel: DataModelInterface<Article> = {
  ...articleMeta,
  entity: undefined as unknown as Article,
  mapper: mapArticle,
  serialiser: ArticleSerialiser,
  childrenTokens: ["author", "topics"],
};
"""

ARTICLE_MAP = """\
import { Article } from "./article.entity";

export const mapArticle = (params: { data: any; record: any }) => {
  return {
    ...mapEntity({ record: params.data }),
    title: params.data.title,
    body: params.data.body,
    coverImage: params.data.coverImage,
    aiStatus: params.data.aiStatus,
    relevance: params.record.get("relevance") ?? 0,
    author: undefined,
    topics: [],
  };
};
"""

ARTICLE_SERIALISER = """\
import { Injectable } from "@nestjs/common";
import { ConfigService } from "@nestjs/config";
import { AbstractJsonApiSerialiser } from "../../../common";
import { JsonApiSerialiserFactory } from "../../../common";
import { S3Service } from "../../../foundations/s3/services/s3.service";
import { UserModel } from "../../../foundations/user/entities/user.model";
import { TopicModel } from "../../topic/entities/topic.model";
import { ArticleModel } from "../entities/article.model";

@Injectable()
export class ArticleSerialiser extends AbstractJsonApiSerialiser {
  constructor(
    serialiserFactory: JsonApiSerialiserFactory,
    configService: ConfigService,
    private readonly s3Service: S3Service,
  ) {
    super(serialiserFactory, configService);
  }

  get type(): string {
    return ArticleModel.endpoint;
  }

  create(): JsonApiDataInterface {
    this.attributes = {
      title: "title",
      body: "body",
      aiStatus: "aiStatus",
      coverImage: async (data: Article) => {
        if (!data.coverImage) return undefined;
        return await this.s3Service.generateSignedUrl({ key: data.coverImage });
      },
    };

    this.meta = {
      relevance: "relevance",
    };

    this.relationships = {
      author: {
        data: this.serialiserFactory.create(UserModel),
      },
      topics: {
        name: "topics",
        data: this.serialiserFactory.create(TopicModel),
      },
    };

    return super.create();
  }
}
"""

ARTICLE_MODULE = """\
import { Module, OnModuleInit } from "@nestjs/common";
import { modelRegistry } from "../../common/registries/registry";
import { ArticleModel } from "./entities/article.model";
import { ArticleSerialiser } from "./serialisers/article.serialiser";
import { ArticleService } from "./services/article.service";

@Module({
  providers: [ArticleSerialiser, ArticleService],
})
export class ArticleModule implements OnModuleInit {
  onModuleInit() {
    modelRegistry.register(ArticleModel);
  }
}
"""

FEED_SERVICE = """\
import { Injectable } from "@nestjs/common";
import { ArticleModel } from "../../article/entities/article.model";
import { Article } from "../../article/entities/article.entity";

@Injectable()
export class FeedService {
  async find(): Promise<Article[]> {
    return this.builder.build({ model: ArticleModel, type: ArticleModel.type });
  }
}
"""


def write(root: Path, relative: str, text: str) -> Path:
    """Write dedented text under root, creating parent directories."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dedent(text), encoding="utf-8")
    return path


def snapshot(root: Path) -> dict[str, bytes]:
    """Every file under root, keyed by relative path."""
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Project root holding a legacy article module and one consumer."""
    module = "src/features/article"
    write(tmp_path, f"{module}/entities/article.meta.ts", ARTICLE_META)
    write(tmp_path, f"{module}/entities/article.entity.ts", ARTICLE_ENTITY)
    write(tmp_path, f"{module}/entities/article.model.ts", ARTICLE_MODEL)
    write(tmp_path, f"{module}/entities/article.map.ts", ARTICLE_MAP)
    write(
        tmp_path,
        f"{module}/serialisers/article.serialiser.ts",
        ARTICLE_SERIALISER,
    )
    write(tmp_path, f"{module}/article.module.ts", ARTICLE_MODULE)
    write(tmp_path, "src/features/feed/services/feed.service.ts", FEED_SERVICE)
    write(tmp_path, "src/common/index.ts", "export * from './abstracts';\n")
    return tmp_path


@pytest.fixture
def article_module(project: Path) -> Path:
    return project / "src/features/article"
