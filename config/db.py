from typing import Optional

from tortoise import Tortoise, connections

from config.settings import DATABASE_URL

MODEL_MODULES = ['apps.blog.models', 'apps.attachments.models']


async def init_db(db_url: Optional[str] = None, generate_schemas: bool = True) -> None:
    await Tortoise.init(db_url=db_url or DATABASE_URL, modules={'models': MODEL_MODULES})
    if generate_schemas:
        await Tortoise.generate_schemas(safe=True)


async def close_db() -> None:
    await connections.close_all()
