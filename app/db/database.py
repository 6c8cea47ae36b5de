import sqlalchemy
from google.cloud.sql.connector import Connector
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import settings

# Cloud SQL Connector は必要になった時点で初期化する
connector = None


def getconnection():
    """
    Cloud SQL への接続を確立する関数.
    config.py (settings) の値を使用します。
    """
    global connector
    if connector is None:
        connector = Connector()

    # settings.DB_HOST には INSTANCE_CONNECTION_NAME が入っています
    conn = connector.connect(
        settings.DB_HOST,
        "pymysql",
        user=settings.DB_USER,
        password=settings.DB_PASSWORD,
        db=settings.DB_NAME,
        charset="utf8mb4",
    )
    return conn


def create_db_engine(url: str = ""):
    """
    DBエンジンを作成する。
    url (または DATABASE_URL) があれば直接接続し、なければ Cloud SQL 経由。
    """
    url = url or settings.DATABASE_URL
    if url:
        connect_args = {}
        if url.startswith("sqlite"):
            # 開封処理はスレッドをまたいで同じエンジンを使う
            connect_args = {"check_same_thread": False, "timeout": 30}
        return sqlalchemy.create_engine(url, connect_args=connect_args)

    return sqlalchemy.create_engine(
        "mysql+pymysql://",
        creator=getconnection,
        # 台帳コミットはロック読み取りを前提にするため明示
        isolation_level="REPEATABLE READ",
    )


# エンジンの作成
# ローカル実行時など、接続情報がない場合にクラッシュしないよう保護
try:
    engine = create_db_engine()
except Exception as e:
    print(f"Warning: Could not create database engine. {e}")
    engine = None

# セッション作成
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    DBセッションを取得するための依存関係.
    """
    if engine is None:
        raise Exception("Database engine is not initialized.")

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
