"""
Constants for the comerws backend.

File extensions
---------------
Query inputs carry the extension of their detected format (``fa``, ``afa``,
``sto``, ``a3m``, ``pro``, ``tpro``). Intermediate and result files use:

  - qry   query sequence extracted by a search helper
  - pwfa  pairwise alignments produced by a search helper
  - cov   structural covariance (xcov) file
  - neff  effective number of sequences of an MSA
  - bin / tbin   COMER / COTHER profile database files
  - json  per-query search results
"""

# =============================================================================
# File extensions
# =============================================================================
QRY_EXT = "qry"
FAS_EXT = "fa"
AFA_EXT = "afa"
STO_EXT = "sto"
A3M_EXT = "a3m"
PWFA_EXT = "pwfa"
COV_EXT = "cov"
PRO_EXT = "pro"
TPRO_EXT = "tpro"
COMER_DB_EXT = "bin"
COTHER_DB_EXT = "tbin"
OUT_EXT = "json"
NEFF_EXT = "neff"
LOG_EXT = "log"

# =============================================================================
# Job limits (defaults; overridable in the backend configuration)
# =============================================================================
MAX_NCPUS = 6  # CPU cores assigned to a job
MULTICORE_THRESHOLD = 6  # above this many queries, run one query per core
MAX_NSEQS_PER_ENGINE = 20000  # sequences each search engine may collect
MAX_NQUERIES = 100
MAX_NQUERIES_COTHER = 10
MAX_SEQLEN_COTHER = 1000

# =============================================================================
# Result naming
# =============================================================================
METHODS = ("comer", "cother")
RESULT_SUFFIX = "_result"
HHSUITE_SUFFIX = "_resulthhs"
HMMER_SUFFIX = "_resulthmmer"
REFORMAT_SUFFIX = "_rfm"
PREDICTED_DISTANCES_SUFFIX = "__pred__nonavg.prb"
UNNAMED_QUERY_HEADER = ">Query_{index} (unnamed)"

# Passes of the batch profile search kept in device memory (percent)
PASS2MEMP = {"comer": 50, "cother": 100}

# Distance-prediction options handed to adddist
ADDDIST_DISTANCES = "3,5,7"
ADDDIST_MIN_PROBABILITY = 0.05

MANIFEST_HEADER = "# Search_results Profile MSA Query neff_file logfile"

# Query and profile files are read and written byte for byte
QUERY_ENCODING = "latin-1"
