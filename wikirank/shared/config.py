# Configuration loader with environment variable support
# Every tunable of the search core has a default so Config() is usable as-is.

import logging
import math
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import RankBaseModel

logger = logging.getLogger(__name__)

CACHE_POLICIES = {"lru", "fifo", "lfu"}


class AppConfig(BaseModel):
    name: str = "wikirank"
    version: str = "0.1.0"
    log_level: str = "INFO"


class EmbeddingConfig(BaseModel):
    """Remote embedding service used to vectorise the (expanded) query."""

    base_url: str = Field(default="http://localhost:8080")
    model_name: str = Field(default="text-embedding-004")
    dims: int = Field(default=768, gt=0)
    timeout_seconds: float = Field(default=60.0, gt=0)

    @validator("dims")
    def validate_dims(cls, v):
        """Validate dimensions are reasonable"""
        if v > 4096:  # Sanity check
            logger.warning(f"dims={v} is unusually large, typical range is 128-1536")
        return v


class VectorStoreConfig(BaseModel):
    """Qdrant connection used by the QdrantVectorIndex adapter."""

    host: str = "localhost"
    port: int = 6333
    collection_name: str = "confluence"
    timeout_seconds: float = 10.0


class VocabularyConfig(BaseModel):
    """Static word lists driving keyword extraction and score corrections."""

    stop_words: List[str] = Field(
        default_factory=lambda: [
            "は", "が", "を", "に", "で", "と", "の", "も", "から", "まで", "へ", "や",
            "について", "に関して", "に対して", "です", "ます", "である",
            "でしょうか", "ください", "して", "くれ", "とは",
        ]
    )
    negative_words: List[str] = Field(
        default_factory=lambda: [
            "何", "何が", "なに", "いつ", "どこ", "だれ", "どの", "どう",
            "どのように", "何で", "なぜ", "どうして", "できる", "できない",
            "できますか", "できませんか", "可能", "不可能", "原因", "理由",
            "方法", "やり方", "手順", "仕方", "など", "より", "教える", "教えて",
            "知る", "知りたい", "確認", "見る",
        ]
    )
    domain_terms: List[str] = Field(
        default_factory=lambda: [
            "急募", "教室", "求人", "会員", "応募", "契約", "請求", "採用",
            "退会", "削除", "コピー", "オファー", "口コミ", "Q&A", "Q＆A",
            "応募不可", "重複", "自動更新", "バッチ",
        ]
    )
    compound_terms: List[str] = Field(
        default_factory=lambda: [
            "教室管理", "教室削除", "教室コピー", "求人管理", "求人詳細",
            "会員登録", "会員情報", "応募履歴", "応募管理", "契約更新",
            "請求書", "自動更新", "応募不可", "退会処理",
        ]
    )
    generic_function_terms: List[str] = Field(
        default_factory=lambda: [
            "機能", "仕様", "画面", "ページ", "管理", "一覧", "登録", "編集",
            "削除", "閲覧", "詳細", "情報", "新規", "作成", "更新", "帳票",
            "データ", "フロー",
        ]
    )
    generic_document_terms: List[str] = Field(
        default_factory=lambda: [
            "共通要件", "非機能要件", "要件", "ガイドライン", "用語", "ワード",
            "ディフィニション", "definition", "一覧", "フロー", "詳細", "詳細閲覧",
        ]
    )
    penalty_terms: List[str] = Field(
        default_factory=lambda: [
            "議事録", "ミーティング", "meeting", "メール", "通知", "アーカイブ",
            "archive", "バックアップ", "削除予定", "不要",
        ]
    )
    generic_title_terms: List[str] = Field(
        default_factory=lambda: [
            "共通要件", "非機能要件", "用語", "ワード", "ディフィニション",
            "definition", "ガイドライン", "一覧", "フロー", "要件",
        ]
    )
    out_of_scope_terms: List[str] = Field(default_factory=lambda: ["本システム外"])
    synonyms: Dict[str, List[str]] = Field(
        default_factory=lambda: {
            "教室": ["クラス", "授業"],
            "求人": ["募集"],
            "会員": ["ユーザー"],
            "退会": ["解約"],
            "請求": ["課金"],
        }
    )


class KeywordConfig(BaseModel):
    max_keywords: int = Field(default=12, gt=0)
    high_priority_count: int = Field(default=3, ge=0)
    min_keyword_length: int = Field(default=2, gt=0)


class LabelPolicyConfig(BaseModel):
    """Label groups excluded from vector hits unless the caller opts in."""

    always_excluded: List[str] = Field(default_factory=lambda: ["フォルダ"])
    meeting_labels: List[str] = Field(
        default_factory=lambda: ["議事録", "meeting-notes"]
    )
    archive_labels: List[str] = Field(default_factory=lambda: ["アーカイブ", "archive"])


class RetrievalConfig(BaseModel):
    over_fetch_factor: int = Field(default=30, gt=0)
    max_distance: float = Field(default=2.0, gt=0)
    lexical_min_limit: int = Field(default=150, gt=0)
    lexical_limit_factor: float = Field(default=2.5, gt=0)
    lexical_warmup_timeout_seconds: float = Field(default=20.0, ge=0)
    lexical_warmup_poll_seconds: float = Field(default=0.1, gt=0)
    backend_timeout_seconds: float = Field(default=15.0, gt=0)
    labels: LabelPolicyConfig = Field(default_factory=LabelPolicyConfig)

    def lexical_limit(self, top_k: int) -> int:
        return max(self.lexical_min_limit, math.ceil(top_k * self.lexical_limit_factor))


class TitleMatchConfig(BaseModel):
    compound_floor: float = 0.7
    sequence_floor: float = 0.95
    sequence_penalty_per_char: float = 0.02
    sequence_max_penalty: float = 0.2
    sequence_min: float = 0.75
    scattered_floor: float = 0.6
    scattered_penalty_per_char: float = 0.03
    scattered_max_penalty: float = 0.3
    strong_threshold: float = 0.66
    strong_boost: float = Field(default=5.0, ge=1.0)
    partial_threshold: float = 0.33
    partial_boost: float = Field(default=3.0, ge=1.0)


class TitleRescueConfig(BaseModel):
    enabled: bool = True
    max_candidates: int = Field(default=10, gt=0)
    lookup_limit: int = Field(default=20, gt=0)
    timeout_seconds: float = Field(default=3.0, gt=0)
    exact_distance: float = Field(default=0.3, ge=0)
    max_leftover_chars: int = Field(default=1, ge=0)


class KeywordScoringConfig(BaseModel):
    title_weight: float = 3.0
    label_weight: float = 2.0
    content_weight: float = 1.0
    content_occurrence_cap: int = Field(default=3, gt=0)
    high_priority_weight: float = 1.0
    low_priority_weight: float = 0.5
    generic_document_weight: float = 0.3
    generic_function_weight: float = 0.5
    hybrid_keyword_weight: float = 0.1
    hybrid_label_weight: float = 0.05
    first_chunk_discount: float = 0.95


class FusionConfig(BaseModel):
    rrf_k: int = Field(default=60, gt=0)
    source_weights: Dict[str, float] = Field(
        default_factory=lambda: {"vector": 1.0, "lexical": 1.0, "title-exact": 1.0}
    )


class CompositeConfig(BaseModel):
    vector_weight: float = Field(default=0.3, ge=0)
    lexical_weight: float = Field(default=0.4, ge=0)
    title_weight: float = Field(default=0.2, ge=0)
    label_weight: float = Field(default=0.1, ge=0)
    max_vector_distance: float = Field(default=2.0, gt=0)
    max_lexical_score: float = Field(default=10.0, gt=0)
    top_n: int = Field(default=100, ge=0)
    proxy_factor: float = Field(default=0.5, ge=0)
    domain_boost_per_term: float = 0.05
    domain_boost_cap: float = 0.15
    penalty_term_factor: float = 0.9
    generic_document_factor: float = 0.8
    out_of_scope_factor: float = 0.8

    @property
    def weight_sum(self) -> float:
        return self.vector_weight + self.lexical_weight + self.title_weight + self.label_weight


class FilterConfig(BaseModel):
    min_content_length: int = Field(default=100, ge=0)
    meeting_categories: List[str] = Field(
        default_factory=lambda: ["meeting", "議事録"]
    )
    meeting_title_patterns: List[str] = Field(
        default_factory=lambda: [
            r"^\s*\d{4}[-/.年]\s*\d{1,2}[-/.月]\s*\d{1,2}日?.*(議事録|ミーティング|打ち?合わせ|meeting|minutes|mtg)",
            r"^\s*\d{8}[\s_-].*(議事録|ミーティング|meeting|minutes|mtg)",
        ]
    )
    deprecated_statuses: List[str] = Field(default_factory=lambda: ["deprecated"])
    excluded_title_patterns: List[str] = Field(default_factory=lambda: ["xxx_*"])


class SearchConfig(BaseModel):
    default_top_k: int = Field(default=10, gt=0)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    title_match: TitleMatchConfig = Field(default_factory=TitleMatchConfig)
    title_rescue: TitleRescueConfig = Field(default_factory=TitleRescueConfig)
    keyword_scoring: KeywordScoringConfig = Field(default_factory=KeywordScoringConfig)
    fusion: FusionConfig = Field(default_factory=FusionConfig)
    composite: CompositeConfig = Field(default_factory=CompositeConfig)
    filters: FilterConfig = Field(default_factory=FilterConfig)


class CacheInstanceConfig(BaseModel):
    enabled: bool = True
    ttl_seconds: float = Field(default=300.0, gt=0)
    max_size: int = Field(default=1000, gt=0)
    policy: str = "lru"
    weight_per_hit_seconds: float = Field(default=30.0, ge=0)

    @validator("policy")
    def validate_policy(cls, v):
        """Validate eviction policy is supported"""
        v = v.lower()
        if v not in CACHE_POLICIES:
            raise ValueError(f"policy must be one of {CACHE_POLICIES}, got {v}")
        return v


class CacheConfig(BaseModel):
    search: CacheInstanceConfig = Field(default_factory=CacheInstanceConfig)
    title: CacheInstanceConfig = Field(
        default_factory=lambda: CacheInstanceConfig(ttl_seconds=1800.0, max_size=200)
    )


class Config(RankBaseModel):
    """Main configuration model"""

    app: AppConfig = Field(default_factory=AppConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    vocabulary: VocabularyConfig = Field(default_factory=VocabularyConfig)
    keywords: KeywordConfig = Field(default_factory=KeywordConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)


class Settings(BaseSettings):
    """Environment-based settings"""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    # Environment
    env: str = Field(default="development", alias="ENV")
    config_path: Optional[str] = Field(default=None, alias="CONFIG_PATH")

    # Embedding service
    embedding_base_url: Optional[str] = Field(default=None, alias="EMBEDDING_BASE_URL")

    # Qdrant
    qdrant_host: Optional[str] = Field(default=None, alias="QDRANT_HOST")
    qdrant_port: Optional[int] = Field(default=None, alias="QDRANT_PORT")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def _apply_env_overrides(config: Config, settings: Settings) -> None:
    if settings.embedding_base_url:
        config.embedding.base_url = settings.embedding_base_url
    if settings.qdrant_host:
        config.vector_store.host = settings.qdrant_host
    if settings.qdrant_port:
        config.vector_store.port = settings.qdrant_port
    config.app.log_level = settings.log_level.upper()


def load_config() -> tuple[Config, Settings]:
    """
    Load configuration from YAML file and environment variables.

    Returns:
        tuple: (Config, Settings) - YAML config and environment settings

    Raises:
        FileNotFoundError: If config file not found
        ValueError: If configuration validation fails
    """
    settings = Settings()

    if settings.config_path:
        config_path = Path(settings.config_path)
    else:
        config_path = Path(__file__).parent.parent.parent / "config" / f"{settings.env}.yaml"

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config_dict = yaml.safe_load(f) or {}

    config = Config(**config_dict)
    _apply_env_overrides(config, settings)

    validate_config_at_startup(config, settings)

    return config, settings


def validate_config_at_startup(config: Config, settings: Settings) -> None:
    """
    Validate cross-field configuration at startup. Fails fast on settings
    that would silently break ranking.

    Raises:
        ValueError: If critical validation fails
    """
    composite = config.search.composite
    if composite.weight_sum <= 0:
        raise ValueError("search.composite weights must not all be zero")
    if abs(composite.weight_sum - 1.0) > 1e-6:
        logger.warning(
            f"Composite weights sum to {composite.weight_sum:.3f}; "
            "scores will not be bounded by 1.0"
        )

    title_match = config.search.title_match
    if title_match.partial_threshold > title_match.strong_threshold:
        raise ValueError(
            "search.title_match.partial_threshold must not exceed strong_threshold"
        )

    for name, weight in config.search.fusion.source_weights.items():
        if weight < 0:
            raise ValueError(f"fusion source weight for {name} must be >= 0, got {weight}")

    logger.info(
        "Configuration validation successful: env=%s rrf_k=%s top_n=%s",
        settings.env,
        config.search.fusion.rrf_k,
        composite.top_n,
    )


# Global config instances (loaded once at startup)
_config: Optional[Config] = None
_settings: Optional[Settings] = None


def get_config() -> Config:
    """Get the global Config instance"""
    global _config
    if _config is None:
        _config, _ = load_config()
    return _config


def get_settings() -> Settings:
    """Get the global Settings instance"""
    global _settings
    if _settings is None:
        _, _settings = load_config()
    return _settings


def init_config() -> tuple[Config, Settings]:
    """Initialize and cache global config instances"""
    global _config, _settings
    _config, _settings = load_config()
    return _config, _settings


def reload_config() -> tuple[Config, Settings]:
    """Force reload of config/settings from disk and environment."""
    global _config, _settings
    _config, _settings = load_config()
    return _config, _settings
