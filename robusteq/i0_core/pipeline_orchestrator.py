# robusteq/i0_core/pipeline_orchestrator.py
"""
Batch orchestrator for robusteq.
Loads image/mask arrays, runs the preprocessing chain and stores the results.
All paths are taken from config.yaml (or CLI overrides), no hardcoded values.
"""

import os, logging, argparse, yaml, glob, re, multiprocessing, copy, time
from logging.handlers import QueueHandler, QueueListener
from multiprocessing import Queue
from robusteq.i0_core.array_store import load_array, save_array, find_mask_for, is_mask_file
from robusteq.i0_core.types_definitions import EqualizationParams
from robusteq.i1_preprocess.image_preprocessor import ImagePreprocessor

LOG_FORMAT = "%(asctime)s - %(levelname)s - [PID %(process)d] - %(message)s"


def load_config(path):
    """Read the YAML configuration into a plain dict."""
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Configuration file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def apply_overrides(config, args):
    """Command-line values take precedence over config.yaml."""
    config = copy.deepcopy(config)
    for key in ("input_dir", "output_dir", "log_level"):
        value = getattr(args, key, None)
        if value is not None:
            config[key] = value
    eq_cfg = dict(config.get("equalization") or {})
    for key in ("alpha", "tau"):
        value = getattr(args, key, None)
        if value is not None:
            eq_cfg[key] = value
    config["equalization"] = eq_cfg
    return config


def setup_logging(log_level, log_file):
    """Set up multiprocessing-safe logging (QueueHandler + QueueListener)."""
    os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
    log_format = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(log_format)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(log_format)

    log_queue = Queue()
    queue_handler = QueueHandler(log_queue)

    logger = logging.getLogger()
    logger.setLevel(log_level)
    for handler in [h for h in logger.handlers if isinstance(h, QueueHandler)]:
        logger.removeHandler(handler)
    logger.addHandler(queue_handler)

    listener = QueueListener(log_queue, file_handler, stream_handler)
    listener.start()
    return listener


def shutdown_logging(listener):
    """Stop the listener, detach its QueueHandler and close the queue."""
    listener.stop()
    logger = logging.getLogger()
    for handler in [h for h in logger.handlers if isinstance(h, QueueHandler)]:
        if handler.queue is listener.queue:
            logger.removeHandler(handler)
    for handler in listener.handlers:
        handler.close()
    listener.queue.close()
    listener.queue.join_thread()


def natural_key(filename):
    """Natural sort by numeric prefix in filename."""
    base = os.path.basename(filename)
    match = re.match(r"(\d+)", base)
    return (int(match.group(1)), base) if match else (float("inf"), base)


def process_single_image(params):
    """Process one image: load → preprocess → .npy output."""
    image_path, config, output_dir = params

    logger = logging.getLogger()
    if not logger.hasHandlers():
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(getattr(logging, str(config.get("log_level", "INFO")).upper(), logging.INFO))

    start_time = time.perf_counter()
    logging.info(f"Processing {image_path}")

    image = load_array(image_path)
    mask_path = find_mask_for(image_path, config.get("mask_suffix", "_mask"))
    mask = load_array(mask_path) if mask_path else None
    if mask_path:
        logging.info(f"Using mask {mask_path}")

    preprocessor = ImagePreprocessor(config)
    result = preprocessor.preprocess(image, mask)["final_image"]

    output_file = os.path.join(output_dir, os.path.basename(image_path))
    save_array(output_file, result)

    elapsed = time.perf_counter() - start_time
    logging.info(f"Saved {output_file} in {elapsed:.2f}s")
    return output_file


def collect_inputs(input_dir, mask_suffix="_mask"):
    files = glob.glob(os.path.join(input_dir, "*.npy"))
    files = [f for f in files if not is_mask_file(f, mask_suffix)]
    return sorted(set(files), key=natural_key)


def resolve_num_processes(par_cfg):
    num_proc = par_cfg.get("num_processes", 1)
    if num_proc == "auto":
        return max(1, multiprocessing.cpu_count() - 1)
    return max(1, int(num_proc))


def run_pipeline(args):
    """Main pipeline: load → equalize → store. Returns the written paths."""
    start_time = time.perf_counter()

    config = apply_overrides(load_config(args.config), args)

    # --- Logging setup ---
    log_file = config.get("log_file")
    if not log_file:
        raise ValueError("Missing 'log_file' in config.yaml")
    log_level = getattr(logging, str(config.get("log_level", "INFO")).upper(), None)
    if not isinstance(log_level, int):
        raise ValueError(f"Invalid log_level: {config.get('log_level')}")
    listener = setup_logging(log_level, log_file)
    logging.info("Pipeline started")

    try:
        params_model = EqualizationParams(**config["equalization"])
        logging.info(f"Equalization parameters: alpha={params_model.alpha}, tau={params_model.tau}")

        input_dir = config.get("input_dir")
        if not input_dir or not os.path.isdir(input_dir):
            raise FileNotFoundError(f"Input directory not found or invalid: {input_dir}")
        output_dir = config.get("output_dir")
        if not output_dir:
            raise ValueError("Missing 'output_dir' in config.yaml")
        os.makedirs(output_dir, exist_ok=True)

        input_files = collect_inputs(input_dir, config.get("mask_suffix", "_mask"))
        if not input_files:
            raise FileNotFoundError(f"No input arrays (*.npy) found in {input_dir}")
        logging.info(f"Total images: {len(input_files)}")

        # --- Parallel processing (one image per task) ---
        par_cfg = config.get("parallel", {}) or {}
        parallel_enabled = bool(par_cfg.get("enabled", True))
        num_proc = resolve_num_processes(par_cfg)

        params = [(f, copy.deepcopy(config), output_dir) for f in input_files]

        outputs = []
        if not parallel_enabled or num_proc == 1 or len(params) == 1:
            for p in params:
                outputs.append(process_single_image(p))
        else:
            with multiprocessing.Pool(processes=num_proc) as pool:
                for out in pool.imap(process_single_image, params):
                    outputs.append(out)

        total_time = time.perf_counter() - start_time
        logging.info(f"Pipeline finished in {total_time:.2f}s")
        return outputs
    finally:
        shutdown_logging(listener)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Masked robust contrast equalization pipeline")
    parser.add_argument("--config", default="config.yaml", help="Path to YAML configuration file")
    args = parser.parse_args()
    run_pipeline(args)
