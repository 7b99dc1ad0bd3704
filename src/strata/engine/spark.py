"""
Spark session factory for Strata.
Creates SparkSessions with the Delta Lake extensions the DeltaTableStore needs.
"""

from typing import Optional
from pyspark.sql import SparkSession

from strata.config import StrataConfig


_spark_session: Optional[SparkSession] = None

DELTA_EXTENSIONS = {
    "spark.sql.extensions": "io.delta.sql.DeltaSparkSessionExtension",
    "spark.sql.catalog.spark_catalog": "org.apache.spark.sql.delta.catalog.DeltaCatalog",
}


def get_spark_session(
    local: bool = True,
    app_name: str = "Strata",
    config: Optional[dict] = None,
    settings: Optional[StrataConfig] = None,
) -> SparkSession:
    """
    Get or create a SparkSession.

    This function implements a singleton pattern to reuse the same SparkSession
    throughout the application lifecycle.

    Args:
        local: If True, create local SparkSession. If False, create for cluster mode
        app_name: Application name for the Spark session
        config: Additional Spark configuration as key-value pairs
        settings: StrataConfig supplying spark_config defaults and the
            base_path the local warehouse lives under

    Returns:
        SparkSession instance
    """
    global _spark_session

    if _spark_session is not None:
        return _spark_session

    settings = settings or StrataConfig()
    builder = SparkSession.builder.appName(app_name)

    if local:
        builder = builder.master("local[*]")
        builder = builder.config("spark.driver.memory", "2g")
        builder = builder.config("spark.sql.warehouse.dir", f"{settings.base_path.rstrip('/')}/spark-warehouse")
        builder = builder.config("spark.sql.shuffle.partitions", "4")

    # Timestamps are written and read back in UTC
    builder = builder.config("spark.sql.session.timeZone", "UTC")

    for key, value in DELTA_EXTENSIONS.items():
        builder = builder.config(key, value)

    # Explicit config wins over the project's spark_config
    for key, value in {**settings.spark_config, **(config or {})}.items():
        builder = builder.config(key, value)

    if local:
        # Pulls the matching delta-core jars onto the local classpath
        from delta import configure_spark_with_delta_pip
        builder = configure_spark_with_delta_pip(builder)

    _spark_session = builder.getOrCreate()
    _spark_session.sparkContext.setLogLevel("WARN")

    return _spark_session


def stop_spark_session() -> None:
    """
    Stop the current SparkSession.
    Useful for testing or cleanup.
    """
    global _spark_session

    if _spark_session is not None:
        _spark_session.stop()
        _spark_session = None


__all__ = [
    "DELTA_EXTENSIONS",
    "get_spark_session",
    "stop_spark_session",
]
