# MiniGPT Constants
# ================================

# Reserved vocabulary entries
PAD_TOKEN = "<PAD>"
UNK_TOKEN = "<UNK>"
PAD_TOKEN_ID = 0
UNK_TOKEN_ID = 1
NUM_RESERVED_TOKENS = 2

# Default model configuration values
DEFAULT_D_MODEL = 64        # Embedding dimension
DEFAULT_NUM_HEADS = 4       # Number of attention heads
DEFAULT_NUM_LAYERS = 2      # Number of transformer blocks
DEFAULT_MAX_LEN = 64        # Maximum context length
DEFAULT_DROPOUT = 0.1       # Default dropout rate
FFN_EXPANSION = 4           # dff = FFN_EXPANSION * d_model when not given

# Weight initialization standard deviation
WEIGHT_INIT_STD = 0.02

# Numerical stability
LAYER_NORM_EPS = 1e-6       # Added to the variance before the square root
MASK_VALUE = -1e9           # Additive offset for masked attention scores
POSITIONAL_BASE = 10000.0   # Wavelength base of the sinusoidal encoding

# Sampling
MIN_TEMPERATURE = 1e-5      # Floor applied to the temperature divisor

# Training defaults
DEFAULT_BATCH_SIZE = 8
DEFAULT_EPOCHS = 10
DEFAULT_LEARNING_RATE = 1e-3
DEFAULT_SEQ_LEN = 32
LOG_EVERY_N_STEPS = 5       # Batches between debug loss logs inside an epoch

# Generation defaults
DEFAULT_MAX_NEW_TOKENS = 100
DEFAULT_TEMPERATURE = 0.8
DEFAULT_TOP_K = 5

DEFAULT_CORPUS = (
    "The quick brown fox jumps over the lazy dog. "
    "Transformers are cool. TensorFlow is fun."
)
