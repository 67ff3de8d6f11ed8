from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from sizzle.config import Settings, get_settings
from sizzle.render.assets import AssetMaterializer
from sizzle.render.transcoder import FFmpegTranscoder, Transcoder


@lru_cache
def get_transcoder() -> Transcoder:
    return FFmpegTranscoder(get_settings())


@lru_cache
def get_materializer() -> AssetMaterializer:
    return AssetMaterializer(get_settings())


AppSettings = Annotated[Settings, Depends(get_settings)]
TranscoderDep = Annotated[Transcoder, Depends(get_transcoder)]
MaterializerDep = Annotated[AssetMaterializer, Depends(get_materializer)]
