from deepcite.models.state import Stage
from deepcite.stages import decompose, index, retrieve, scrape, search, synthesize
from deepcite.stages.context import StageContext, error_entry

STAGE_RUNNERS = {
    Stage.DECOMPOSE: decompose.run,
    Stage.SEARCH: search.run,
    Stage.SCRAPE: scrape.run,
    Stage.INDEX: index.run,
    Stage.RETRIEVE: retrieve.run,
    Stage.SYNTHESIZE: synthesize.run,
}

__all__ = ["STAGE_RUNNERS", "StageContext", "error_entry"]
