"""Amplicon sequence variant inference: dereplication, error-model learning,
divisive denoising, paired-end merging & bimera removal."""
